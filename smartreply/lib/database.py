import logging

from supabase import Client, create_client

from smartreply.lib.config import Settings

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Settings) -> Client:
    settings.require('supabase_url', 'supabase_key')
    logger.info("Initializing Supabase client...")
    client = create_client(settings.supabase_url, settings.supabase_key)
    logger.info("Supabase client initialized successfully")
    return client
