# tg_assistant/services/chat_handler.py

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel

from tg_assistant.core.markdown import escape_markdown, to_telegram_markdown
from tg_assistant.core.telegram_client import TelegramClient
from tg_assistant.data_schemas.requests import ChatWithLlmRequest
from tg_assistant.data_schemas.telegram import Message, PhotoSize
from tg_assistant.services.llm_service import LLMService
from tg_assistant.services.message_log import MessageLog

logger = logging.getLogger(__name__)

JPEG_MAGIC = b"\xff\xd8\xff"
TRUNCATION_MARKER = "\n(response cut)"
DEFAULT_MAX_REPLY_LENGTH = 4000


class ChatOutcome(str, Enum):
    REPLIED = "replied"  # formatted reply sent and stored
    REPLIED_PLAIN = "replied_plain"  # formatting or formatted send failed, plain text sent
    REPLIED_ERROR = "replied_error"  # model call failed, error text sent
    UNDELIVERED = "undelivered"  # no reply could be sent


class DeliveryResult(BaseModel):
    """Outcome of one send attempt; failures are values, not exceptions."""

    sent: Optional[Message] = None
    formatted: bool = False
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.sent is not None


def is_jpeg(data: Optional[bytes]) -> bool:
    return data is not None and len(data) >= 3 and data[:3] == JPEG_MAGIC


def truncate_reply(text: str, max_length: int = DEFAULT_MAX_REPLY_LENGTH) -> str:
    if len(text) > max_length:
        return f"{text[:max_length]}{TRUNCATION_MARKER}"
    return text


def render_reply(
    text: str,
    max_length: int = DEFAULT_MAX_REPLY_LENGTH,
    render: Callable[[str], str] = to_telegram_markdown,
) -> str:
    """Render text for formatted delivery, keeping the rendered body within max_length.

    The source text is cut before rendering, so a cut never lands inside an
    escape pair or an entity.
    """
    rendered = render(text)
    if len(rendered) <= max_length:
        return rendered

    cut = min(len(text), max_length)
    while True:
        body = render(text[:cut])
        if len(body) <= max_length or cut == 0:
            return f"{body}{escape_markdown(TRUNCATION_MARKER)}"
        # Escaping grows the text, shrink the source by the overshoot ratio
        cut = min(cut - 1, cut * max_length // len(body))


def select_photo_size(photo: List[PhotoSize]) -> Optional[PhotoSize]:
    """Pick the largest variant along the photo's longer side."""
    if not photo:
        return None
    widest = max(photo, key=lambda size: size.width)
    if widest.width > widest.height:
        return widest
    return max(photo, key=lambda size: size.height)


class LlmChatHandler:
    """Turns one queued request into a model call, a reply and a log entry"""

    def __init__(
        self,
        telegram: TelegramClient,
        message_log: MessageLog,
        llm_service: LLMService,
        default_response: str,
        max_reply_length: int = DEFAULT_MAX_REPLY_LENGTH,
        render: Callable[[str], str] = to_telegram_markdown,
    ):
        self.telegram = telegram
        self.message_log = message_log
        self.llm_service = llm_service
        self.default_response = default_response
        self.max_reply_length = max_reply_length
        self.render = render

    async def handle(self, request: ChatWithLlmRequest) -> ChatOutcome:
        message = request.message
        sender = message.from_user
        logger.info(
            f"Processing LLM request from {sender.username if sender else None} "
            f"({sender.id if sender else None})"
        )
        context_messages = await self.message_log.select_window(message)

        try:
            image = await self.download_image(message)
            response_text = await self.llm_service.get_response(request, context_messages, image)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"LLM request for message {message.message_id} failed")
            delivery = await self.send_plain(message, str(e) or type(e).__name__)
            if not delivery.delivered:
                return ChatOutcome.UNDELIVERED
            await self.message_log.append(delivery.sent, request.self_user)
            return ChatOutcome.REPLIED_ERROR

        response_text = (response_text or "").strip()
        if not response_text:
            response_text = self.default_response

        delivery = await self.deliver(message, response_text)
        if not delivery.delivered:
            return ChatOutcome.UNDELIVERED
        await self.message_log.append(delivery.sent, request.self_user)
        return ChatOutcome.REPLIED if delivery.formatted else ChatOutcome.REPLIED_PLAIN

    async def download_image(self, message: Message) -> Optional[bytes]:
        """Fetch the message photo if it is a JPEG; None on any problem."""
        photo_size = select_photo_size(message.photo or [])
        if photo_size is None:
            return None
        try:
            tg_file = await self.telegram.get_file(photo_size.file_id)
            if not tg_file.file_path or tg_file.file_size is None:
                return None
            data = await self.telegram.download_file(tg_file.file_path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not download photo of message {message.message_id}: {e}")
            return None

        if not is_jpeg(data):
            logger.warning(f"Photo of message {message.message_id} is not a JPEG, ignoring it")
            return None
        return data

    async def deliver(self, message: Message, text: str) -> DeliveryResult:
        """Send formatted text, falling back to plain text on any failure."""
        try:
            formatted = render_reply(text, self.max_reply_length, self.render)
            sent = await self.telegram.send_message(
                message.chat.id,
                formatted,
                parse_mode="MarkdownV2",
                reply_to_message_id=message.message_id,
                message_thread_id=message.message_thread_id,
            )
            return DeliveryResult(sent=sent, formatted=True)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to convert to Telegram Markdown or send message")
        return await self.send_plain(message, text)

    async def send_plain(self, message: Message, text: str) -> DeliveryResult:
        try:
            sent = await self.telegram.send_message(
                message.chat.id,
                truncate_reply(text, self.max_reply_length),
                reply_to_message_id=message.message_id,
                message_thread_id=message.message_thread_id,
            )
            return DeliveryResult(sent=sent)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Failed to send plain text reply to message {message.message_id}")
            return DeliveryResult(error=str(e))
