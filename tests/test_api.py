# tests/test_api.py

import time
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from tg_assistant import create_app
from tg_assistant.core.usage_client import UsageClient
from tg_assistant.services.llm_service import LLMService
from tests.conftest import GROUP_CHAT_ID

SECRET_HEADER = {"X-Telegram-Bot-Api-Secret-Token": "webhook-secret"}


@pytest.fixture
def llm_service():
    mock = AsyncMock(spec=LLMService)
    mock.get_response.return_value = "Hi there!"
    return mock


@pytest.fixture
def app(test_settings, telegram, llm_service, db_engine, self_user):
    """Create application for testing."""
    telegram.get_me.return_value = self_user
    return create_app(
        config=test_settings,
        telegram_client=telegram,
        llm_service=llm_service,
        db_engine=db_engine,
        usage_client=AsyncMock(spec=UsageClient),
    )


@pytest.fixture
def client(app):
    """Create a test client for the app; entering it runs the lifespan."""
    with TestClient(app) as test_client:
        yield test_client


def telegram_update(text, update_id=1, message_id=1, chat_id=GROUP_CHAT_ID, chat_type="supergroup"):
    return {
        "update_id": update_id,
        "message": {
            "message_id": message_id,
            "date": int(time.time()),
            "chat": {"id": chat_id, "type": chat_type},
            "from": {"id": 101, "is_bot": False, "first_name": "Alice", "username": "alice"},
            "text": text,
        },
    }


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_read_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Hello, Telegram LLM Assistant"}


def test_self_identity_resolved_on_startup(client, telegram, self_user):
    telegram.get_me.assert_awaited_once()
    assert client.app.state.self_user == self_user
    telegram.set_webhook.assert_not_awaited()


def test_webhook_registered_when_configured(test_settings, telegram, llm_service, db_engine, self_user):
    test_settings.TELEGRAM_WEBHOOK_URL = "https://bot.example.com/webhook"
    telegram.get_me.return_value = self_user
    app = create_app(config=test_settings, telegram_client=telegram, llm_service=llm_service, db_engine=db_engine)

    with TestClient(app):
        pass

    telegram.set_webhook.assert_awaited_once_with(
        "https://bot.example.com/webhook", secret_token="webhook-secret"
    )
    telegram.close.assert_awaited_once()


def test_webhook_rejects_bad_secret(client, telegram):
    response = client.post(
        "/webhook",
        json=telegram_update("!ping"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
    )

    assert response.status_code == 403
    telegram.send_message.assert_not_awaited()


def test_webhook_rejects_malformed_update(client):
    response = client.post("/webhook", json={"message": "nope"}, headers=SECRET_HEADER)

    assert response.status_code == 422


def test_webhook_runs_command(client, telegram):
    response = client.post("/webhook", json=telegram_update("  !PING "), headers=SECRET_HEADER)

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert telegram.send_message.call_args.args[1] == "pong"


def test_webhook_ignores_unaddressed_group_message(client, telegram, llm_service):
    response = client.post("/webhook", json=telegram_update("hey"), headers=SECRET_HEADER)

    assert response.status_code == 200
    telegram.send_message.assert_not_awaited()
    llm_service.get_response.assert_not_awaited()


def test_model_request_is_answered_before_shutdown(app, telegram, llm_service):
    with TestClient(app) as client:
        response = client.post("/webhook", json=telegram_update("@bot hi"), headers=SECRET_HEADER)
        assert response.status_code == 200

    # Shutdown drains the queue
    llm_service.get_response.assert_awaited_once()
    assert telegram.send_message.call_args.args[1] == "Hi there\\!"
    assert telegram.send_message.call_args.kwargs["reply_to_message_id"] == 1


def test_redelivered_update_is_handled_once(client, telegram):
    update = telegram_update("!ping")
    first = client.post("/webhook", json=update, headers=SECRET_HEADER)
    second = client.post("/webhook", json=update, headers=SECRET_HEADER)

    assert first.status_code == 200
    assert second.status_code == 200
    assert telegram.send_message.await_count == 1


def test_queue_monitoring_requires_api_key(client):
    assert client.get("/monitoring/queue", params={"api_key": "wrong"}).status_code == 403

    response = client.get("/monitoring/queue", params={"api_key": "admin_secret_key"})

    assert response.status_code == 200
    stats = response.json()
    assert stats["capacity"] == 20
    assert stats["workers"] == 1
    assert {"depth", "admitted", "dropped", "processed", "failed"} <= set(stats)


def test_moderation_admin_endpoints(client):
    params = {"api_key": "admin_secret_key"}

    assert client.post(f"/admin/moderation/{GROUP_CHAT_ID}/102", params=params).json() == {"status": "added"}
    assert client.post(f"/admin/moderation/{GROUP_CHAT_ID}/102", params=params).json() == {"status": "unchanged"}
    assert client.get(f"/admin/moderation/{GROUP_CHAT_ID}", params=params).json() == {
        "chat_id": GROUP_CHAT_ID,
        "user_ids": [102],
    }
    assert client.delete(f"/admin/moderation/{GROUP_CHAT_ID}/102", params=params).json() == {"status": "removed"}
    assert client.delete(f"/admin/moderation/{GROUP_CHAT_ID}/102", params=params).json() == {"status": "unchanged"}


def test_moderation_admin_rejects_bad_key(client):
    response = client.get(f"/admin/moderation/{GROUP_CHAT_ID}", params={"api_key": "wrong"})

    assert response.status_code == 403
