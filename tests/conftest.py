import json
import random
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from smartreply.lib.config import Settings
from smartreply.lib.gemini_client import GeminiClient
from smartreply.lib.twilio_client import TwilioClient
from smartreply.routes import Services, create_app
from smartreply.services.pipeline import ReplyPipeline
from smartreply.services.replies import ReplyService
from smartreply.services.whatsapp import WhatsAppService

TEST_USER_ID = "user-123"
TEST_TOKEN = "valid-token"

SAMPLE_REPLIES = [
    {"tone": "casual", "text": "Friday works for me!", "confidence": 0.9},
    {"tone": "friendly", "text": "Sure thing, let's move it to Friday.", "confidence": 0.85},
    {"tone": "professional", "text": "Friday is fine. Same time?", "confidence": 0.8},
]


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Just enough of the postgrest query builder for the storage service"""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = 'select'
        self.columns = '*'
        self.payload = None
        self.filters = []
        self.order_by = None
        self.descending = False
        self.row_limit = None

    def select(self, columns='*'):
        self.op = 'select'
        self.columns = columns
        return self

    def insert(self, payload):
        self.op = 'insert'
        self.payload = payload
        return self

    def update(self, payload):
        self.op = 'update'
        self.payload = payload
        return self

    def delete(self):
        self.op = 'delete'
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = column
        self.descending = desc
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def execute(self):
        if (self.table, self.op) in self.db.failures:
            raise Exception(f"{self.table} {self.op} failed")

        rows = self.db.tables.setdefault(self.table, [])

        if self.op == 'insert':
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = []
            for item in items:
                row = {'id': str(uuid4()), **item}
                rows.append(row)
                created.append(dict(row))
            return FakeResult(created)

        matched = [row for row in rows if all(row.get(c) == v for c, v in self.filters)]

        if self.op == 'update':
            for row in matched:
                row.update(self.payload)
            return FakeResult([dict(row) for row in matched])

        if self.op == 'delete':
            for row in matched:
                rows.remove(row)
            if self.table == 'messages':
                ids = {row['id'] for row in matched}
                self.db.tables['replies'] = [
                    r for r in self.db.tables.get('replies', []) if r['message_id'] not in ids
                ]
            return FakeResult([dict(row) for row in matched])

        results = [dict(row) for row in matched]
        if 'replies(' in self.columns:
            for row in results:
                row['replies'] = [
                    dict(r) for r in self.db.tables.get('replies', []) if r['message_id'] == row['id']
                ]
        if self.order_by:
            results.sort(key=lambda r: r[self.order_by], reverse=self.descending)
        if self.row_limit is not None:
            results = results[:self.row_limit]
        return FakeResult(results)


class FakeAuth:
    def __init__(self, tokens):
        self.tokens = tokens

    def get_user(self, token):
        if token not in self.tokens:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=SimpleNamespace(id=self.tokens[token]))


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.failures = set()
        self.auth = FakeAuth({TEST_TOKEN: TEST_USER_ID})

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, op):
        self.failures.add((table, op))


def gemini_body(text, finish_reason='STOP'):
    return {
        'candidates': [{
            'content': {'parts': [{'text': text}], 'role': 'model'},
            'finishReason': finish_reason
        }]
    }


@pytest.fixture
def make_gemini_response():
    return gemini_body


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        gemini_api_key='test-gemini-key',
        twilio_account_sid='ACtest',
        twilio_auth_token='twilio-token',
        twilio_whatsapp_number='+14155238886',
        gmail_client_id='gmail-client',
        gmail_client_secret='gmail-secret',
        gmail_refresh_token='gmail-refresh',
        supabase_url='https://example.supabase.co',
        supabase_key='service-key',
        supabase_jwt_secret='jwt-secret',
        smartreply_owner_user_id=None,
        log_level='INFO'
    )


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def gemini_client():
    client = MagicMock(spec=GeminiClient)
    client.generate_content.return_value = gemini_body(json.dumps(SAMPLE_REPLIES))
    return client


@pytest.fixture
def twilio_client():
    client = MagicMock(spec=TwilioClient)
    client.send_message.return_value = {'sid': 'SM123', 'status': 'queued'}
    return client


@pytest.fixture
def services(settings, fake_supabase, gemini_client, twilio_client):
    container = Services(settings)
    container.supabase = fake_supabase
    container.replies = ReplyService(gemini_client)
    container.pipeline = ReplyPipeline(container.storage, container.replies, rng=random.Random(7))
    container.whatsapp = WhatsAppService(twilio_client, settings)
    container.gmail = MagicMock()
    return container


@pytest.fixture
def test_client(settings, services):
    app = create_app(settings, services)
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {'Authorization': f"Bearer {TEST_TOKEN}"}
