from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from smartreply.lib.error_handler import ConfigError

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Gemini settings
    gemini_api_key: str = ''
    gemini_model: str = 'gemini-2.5-flash'
    gemini_max_output_tokens: int = 2048
    gemini_temperature: float = 0.7

    # Twilio settings
    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_whatsapp_number: str = ''

    # Gmail settings
    gmail_client_id: str = ''
    gmail_client_secret: str = ''
    gmail_refresh_token: str = ''

    # Supabase settings
    supabase_url: str = ''
    supabase_key: str = ''
    supabase_jwt_secret: str = ''

    # Inbound webhooks carry no user token, so their rows go to this user
    smartreply_owner_user_id: Optional[str] = None

    log_level: str = 'INFO'

    def require(self, *fields: str) -> None:
        """Raise ConfigError naming every listed setting that is empty"""
        missing = [name.upper() for name in fields if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing configuration: {', '.join(missing)}")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
