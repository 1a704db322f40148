# tg_assistant/core/telegram_client.py

from typing import Any, Dict, Iterable, Optional
import httpx
import logging

from tg_assistant.data_schemas.telegram import File, Message, User

logger = logging.getLogger(__name__)


class TelegramAPIError(Exception):
    """Raised when the Bot API rejects a call or cannot be reached"""

    def __init__(self, method: str, status_code: Optional[int], description: str):
        super().__init__(f"Telegram {method} failed ({status_code}): {description}")
        self.method = method
        self.status_code = status_code
        self.description = description


class TelegramClient:
    """Client for interacting with the Telegram Bot API"""

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Telegram client with the bot token"""
        self.token = token
        self.base_url = f"{api_base.rstrip('/')}/bot{token}"
        self.file_base_url = f"{api_base.rstrip('/')}/file/bot{token}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Call a Bot API method and return its `result` field"""
        url = f"{self.base_url}/{method}"
        try:
            response = await self._client.post(url, json=payload or {})
        except httpx.TimeoutException as e:
            raise TelegramAPIError(method, None, f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TelegramAPIError(method, None, str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200 or not body.get("ok"):
            description = body.get("description") or response.text
            if response.status_code == 401:
                logger.error("Bot token was rejected by Telegram. Check TELEGRAM_BOT_TOKEN.")
            raise TelegramAPIError(method, response.status_code, description)

        return body.get("result")

    async def get_me(self) -> User:
        """Get the bot's own user record."""
        result = await self._call("getMe")
        return User.model_validate(result)

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        message_thread_id: Optional[int] = None,
    ) -> Message:
        """Send a text message to a chat and return the message as sent."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_to_message_id is not None:
            payload["reply_parameters"] = {
                "message_id": reply_to_message_id,
                "allow_sending_without_reply": True,
            }
        if message_thread_id is not None:
            payload["message_thread_id"] = message_thread_id

        result = await self._call("sendMessage", payload)
        return Message.model_validate(result)

    async def get_file(self, file_id: str) -> File:
        result = await self._call("getFile", {"file_id": file_id})
        return File.model_validate(result)

    async def download_file(self, file_path: str) -> bytes:
        """Download a file previously resolved with get_file."""
        url = f"{self.file_base_url}/{file_path}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TelegramAPIError("downloadFile", e.response.status_code, str(e)) from e
        except httpx.HTTPError as e:
            raise TelegramAPIError("downloadFile", None, str(e)) from e
        return response.content

    async def set_webhook(
        self,
        url: str,
        secret_token: Optional[str] = None,
        allowed_updates: Iterable[str] = ("message", "chat_member"),
    ) -> bool:
        """Register the webhook URL Telegram should deliver updates to."""
        payload: Dict[str, Any] = {"url": url, "allowed_updates": list(allowed_updates)}
        if secret_token:
            payload["secret_token"] = secret_token
        return bool(await self._call("setWebhook", payload))
