# tg_assistant/services/request_handler.py

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from tg_assistant.data_schemas.telegram import ChatMemberUpdated, Message, Update
from tg_assistant.services.dispatcher import CommandDispatcher
from tg_assistant.services.moderation import ModerationSet

logger = logging.getLogger(__name__)


class TelegramUpdateHandler:
    """Entry point for every inbound update.

    Filters messages by age and chat allow-list before handing them to the
    dispatcher, and keeps the moderation set in step with member updates.
    Errors never leave this class: a failing update is logged and the next
    one is handled normally.
    """

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        moderation: ModerationSet,
        allowed_chat_ids: Iterable[int],
        skip_older_than: Optional[datetime] = None,
        stopping: Optional[asyncio.Event] = None,
    ):
        self.dispatcher = dispatcher
        self.moderation = moderation
        self.allowed_chat_ids = frozenset(allowed_chat_ids)
        self.skip_older_than = skip_older_than
        self.stopping = stopping or asyncio.Event()

    @staticmethod
    def skip_cutoff(started_at: datetime, older_than_seconds: int) -> datetime:
        """Messages dated before this moment are ignored entirely."""
        return started_at.astimezone(timezone.utc) - timedelta(seconds=older_than_seconds)

    async def on_update(self, update: Update) -> dict:
        if update.message is not None:
            return await self.on_message(update.message)
        if update.chat_member is not None:
            return await self.on_chat_member(update.chat_member)
        return {"status": "ignored", "reason": "unsupported_update"}

    async def on_message(self, message: Message) -> dict:
        if self.stopping.is_set():
            return {"status": "ignored", "reason": "stopping"}

        try:
            if self.skip_older_than is not None and message.date < self.skip_older_than:
                return {"status": "ignored", "reason": "too_old"}
            if message.chat.id not in self.allowed_chat_ids:
                return {"status": "ignored", "reason": "chat_not_allowed"}
            return await self.dispatcher.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self.stopping.is_set():
                logger.exception(
                    f"Error handling message {message.message_id} in chat {message.chat.id}"
                )
            return {"status": "error", "detail": str(e)}

    async def on_chat_member(self, update: ChatMemberUpdated) -> dict:
        try:
            action = await self.moderation.apply_member_update(update)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self.stopping.is_set():
                logger.exception(f"Error handling member update in chat {update.chat.id}")
            return {"status": "error", "detail": str(e)}
        return {"status": "success", "moderation": action}
