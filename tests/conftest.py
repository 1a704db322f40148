# tests/conftest.py

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from tg_assistant.core.config import Settings
from tg_assistant.core.database import create_db_engine, init_db
from tg_assistant.core.telegram_client import TelegramClient
from tg_assistant.data_schemas.telegram import Message, User
from tg_assistant.services.message_log import MessageLog
from tg_assistant.services.moderation import ModerationSet

BOT_ID = 4242
GROUP_CHAT_ID = -1001234567890
PRIVATE_CHAT_ID = 555
BASE_TIME = datetime(2025, 11, 13, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_engine():
    """Fresh in-memory database for each test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def message_log(db_engine):
    return MessageLog(db_engine)


@pytest.fixture
def moderation(db_engine):
    return ModerationSet(db_engine)


@pytest.fixture
def self_user():
    return User(id=BOT_ID, is_bot=True, first_name="Assistant", username="assistant_bot")


@pytest.fixture
def alice():
    return User(id=101, first_name="Alice", last_name="Smith", username="alice")


@pytest.fixture
def bob():
    return User(id=102, first_name="Bob", username="bob")


@pytest.fixture
def make_message(alice):
    """Build a Bot API message; every call gets a fresh id unless one is given."""
    counter = {"next_id": 1}

    def _make_message(
        text="hello",
        message_id=None,
        chat_id=GROUP_CHAT_ID,
        chat_type="supergroup",
        from_user=alice,
        date=None,
        caption=None,
        photo=None,
        reply_to_message=None,
        message_thread_id=None,
    ):
        if message_id is None:
            message_id = counter["next_id"]
        counter["next_id"] = max(counter["next_id"], message_id) + 1
        payload = {
            "message_id": message_id,
            "date": date or BASE_TIME + timedelta(minutes=message_id),
            "chat": {"id": chat_id, "type": chat_type},
            "from": from_user,
            "text": text,
            "caption": caption,
            "photo": photo,
            "reply_to_message": reply_to_message,
            "message_thread_id": message_thread_id,
        }
        return Message.model_validate(payload)

    return _make_message


@pytest.fixture
def telegram():
    """Mocked Bot API client; sent messages echo back with increasing ids."""
    client = AsyncMock(spec=TelegramClient)
    sent_ids = iter(range(10_000, 20_000))

    async def _send_message(chat_id, text, parse_mode=None, reply_to_message_id=None, message_thread_id=None):
        return Message.model_validate(
            {
                "message_id": next(sent_ids),
                "date": BASE_TIME + timedelta(days=1),
                "chat": {"id": chat_id, "type": "supergroup"},
                "from": {"id": BOT_ID, "is_bot": True, "first_name": "Assistant", "username": "assistant_bot"},
                "text": text,
            }
        )

    client.send_message.side_effect = _send_message
    return client


@pytest.fixture
def test_settings():
    """Settings with values tests can rely on regardless of the environment."""
    config = Settings()
    config.TELEGRAM_BOT_TOKEN = "123:TEST"
    config.TELEGRAM_WEBHOOK_URL = ""
    config.TELEGRAM_WEBHOOK_SECRET = "webhook-secret"
    config.BOT_NAME = "@bot"
    config.ALLOWED_CHAT_IDS = frozenset({GROUP_CHAT_ID, PRIVATE_CHAT_ID})
    config.SKIP_MESSAGES_OLDER_THAN_SECONDS = 60
    config.DEFAULT_RESPONSE = "Nothing to add."
    config.LLM_API_KEY = "test-key"
    config.LLM_MODEL = "test/model"
    config.LLM_ENDPOINT = "https://llm.example.com/v1"
    config.LLM_REQUEST_QUEUE_CAPACITY = 20
    config.LLM_WORKER_COUNT = 1
    config.SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 1
    config.MESSAGE_RETENTION_DAYS = 0
    config.REPO_URL = "https://github.com/example/tg-assistant"
    config.ADMIN_API_KEY = "admin_secret_key"
    config.LANGCHAIN_TRACING = "false"
    config.LANGCHAIN_API_KEY = None
    return config
