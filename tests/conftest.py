import base64
import hashlib
import hmac
import itertools
import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
import sys
from pathlib import Path

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

from api.routes import create_app
from lib.config import Settings
from lib.database import Database, utcnow
from lib.openai_client import GatewayClient
from lib.twilio_client import WhatsAppClient

TEST_TOKEN = "test-auth-token"
TEST_PHONE = "+5511999999999"
TEST_USER_ID = "user-1"
INTERNAL_TOKEN = "internal-api-token"
WEBHOOK_URL = "http://localhost/whatsapp/webhook"


def twilio_signature(url: str, params: Dict[str, str], token: str = TEST_TOKEN) -> str:
    """HMAC-SHA1 over url + sorted key/value pairs, base64 encoded"""
    data = url + "".join(key + params[key] for key in sorted(params))
    digest = hmac.new(token.encode(), data.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class FakeDatabase(Database):
    """In-memory stand-in for the Supabase tables the service touches"""

    def __init__(self):
        self.profiles: List[Dict[str, Any]] = []
        self.messages: List[Dict[str, Any]] = []
        self.weight_logs: List[Dict[str, Any]] = []
        self.water_intake: Dict[tuple, int] = {}
        self.workouts: List[Dict[str, Any]] = []
        self.workout_logs: List[Dict[str, Any]] = []
        self.meals: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []
        self.touched: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self._seq = itertools.count()

    def find_profile_by_phone(self, phone):
        self.calls.append('find_profile_by_phone')
        for profile in self.profiles:
            if profile.get('whatsapp_phone') == phone:
                return profile
        return None

    def touch_profile(self, profile_id=None, user_id=None, activate=True, now=None):
        self.calls.append('touch_profile')
        self.touched.append({'profile_id': profile_id, 'user_id': user_id, 'activate': activate})

    def list_broadcast_recipients(self):
        return [
            p for p in self.profiles
            if p.get('whatsapp_opt_in') and p.get('whatsapp_active') and p.get('whatsapp_phone')
        ]

    def log_message(self, user_id, direction, text, media_url=None, now=None):
        self.calls.append('log_message')
        self.messages.append({
            'seq': next(self._seq),
            'user_id': user_id,
            'direction': direction,
            'message_text': text,
            'media_url': media_url,
            'timestamp': now or utcnow(),
        })

    def count_recent_inbound(self, user_id, since):
        self.calls.append('count_recent_inbound')
        return len([
            m for m in self.messages
            if m['user_id'] == user_id and m['direction'] == 'inbound' and m['timestamp'] >= since
        ])

    def recent_history(self, user_id, limit=5):
        rows = [m for m in self.messages if m['user_id'] == user_id]
        rows.sort(key=lambda m: (m['timestamp'], m['seq']), reverse=True)
        return [
            {'direction': m['direction'], 'message_text': m['message_text']}
            for m in reversed(rows[:limit])
        ]

    def insert_weight_log(self, user_id, day, weight_kg):
        self.weight_logs.append({'user_id': user_id, 'date': day.isoformat(), 'weight_kg': weight_kg})

    def add_water_intake(self, user_id, day, ml):
        key = (user_id, day.isoformat())
        self.water_intake[key] = self.water_intake.get(key, 0) + ml
        return self.water_intake[key]

    def list_workouts(self, limit=3):
        return self.workouts[:limit]

    def weekly_summary(self, user_id, since):
        since_str = since.isoformat()
        return {
            'workouts': [w for w in self.workout_logs if w['user_id'] == user_id and w['date'] >= since_str],
            'water': [
                {'ml_consumed': ml} for (uid, day), ml in self.water_intake.items()
                if uid == user_id and day >= since_str
            ],
            'meals': [m for m in self.meals if m['user_id'] == user_id and m['datetime'] >= since_str],
        }

    def insert_meal(self, meal):
        self.meals.append(meal)

    def log_notification(self, user_id, phone, status, error_message=None):
        self.notifications.append({'user_id': user_id, 'phone': phone, 'status': status, 'error': error_message})

    def messages_for(self, user_id: str, direction: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            m for m in self.messages
            if m['user_id'] == user_id and (direction is None or m['direction'] == direction)
        ]


def make_profile(**overrides) -> Dict[str, Any]:
    profile = {
        'id': 'profile-1',
        'user_id': TEST_USER_ID,
        'full_name': 'Ana Souza',
        'goals': ['perder peso', 'ganhar energia'],
        'activity_level': 'moderado',
        'whatsapp_phone': TEST_PHONE,
        'whatsapp_opt_in': True,
        'whatsapp_active': True,
        'plan_type': 'premium',
    }
    profile.update(overrides)
    return profile


@pytest.fixture
def settings():
    return Settings(
        twilio_account_sid='ACtest',
        twilio_auth_token=TEST_TOKEN,
        twilio_whatsapp_number='whatsapp:+14155238886',
        supabase_url='https://example.supabase.co',
        supabase_service_role_key='service-role',
        ai_gateway_api_key='gateway-key',
        public_webhook_url=None,
        internal_api_token=INTERNAL_TOKEN,
    )

@pytest.fixture
def database():
    return FakeDatabase()

@pytest.fixture
def premium_profile(database):
    profile = make_profile()
    database.profiles.append(profile)
    return profile

@pytest.fixture
def whatsapp():
    client = MagicMock(spec=WhatsAppClient)
    client.send = AsyncMock(return_value=True)
    return client

@pytest.fixture
def gateway():
    client = MagicMock(spec=GatewayClient)
    client.configured = True
    client.complete = MagicMock(return_value="Resposta da Vita")
    return client

@pytest.fixture
def app(settings, database, whatsapp, gateway):
    app = create_app(
        settings=settings,
        database=database,
        whatsapp_client=whatsapp,
        gateway_client=gateway
    )
    app.config['TESTING'] = True
    return app

@pytest.fixture
def test_client(app):
    return app.test_client()

@pytest.fixture
def post_webhook(test_client):
    """Post a correctly signed Twilio form to the webhook"""
    def _post(params: Dict[str, str], signature: Optional[str] = None):
        headers = {'X-Twilio-Signature': signature or twilio_signature(WEBHOOK_URL, params)}
        return test_client.post('/whatsapp/webhook', data=params, headers=headers)
    return _post

@pytest.fixture
def post_internal(test_client):
    """Post JSON to an internal route with the bearer token"""
    def _post(path: str, token: Optional[str] = INTERNAL_TOKEN, **kwargs):
        headers = {'Authorization': f'Bearer {token}'} if token is not None else {}
        return test_client.post(path, headers=headers, **kwargs)
    return _post
