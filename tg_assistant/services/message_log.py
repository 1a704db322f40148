# tg_assistant/services/message_log.py

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, delete, select

from tg_assistant.core.database import engine as default_engine
from tg_assistant.data_schemas.telegram import Message, User
from tg_assistant.models import ChatHistory, KickedUser

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_CHAR_BUDGET = 30000
DEFAULT_CONTEXT_ROW_CAP = 200


def to_naive_utc(value: datetime) -> datetime:
    """Dates are stored as naive UTC so SQLite and Postgres compare alike."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageLog:
    """Durable append-only log of chat messages and the context-window query.

    Every call runs in its own short transaction on a worker thread, so an
    append committing concurrently with a window read is either fully
    visible to it or not at all.
    """

    def __init__(
        self,
        db_engine: Engine = None,
        context_char_budget: int = DEFAULT_CONTEXT_CHAR_BUDGET,
        context_row_cap: int = DEFAULT_CONTEXT_ROW_CAP,
    ):
        self.engine = db_engine or default_engine
        self.context_char_budget = context_char_budget
        self.context_row_cap = context_row_cap

    async def append(self, message: Message, self_user: User) -> ChatHistory:
        """Persist a message; raises if the (chat, message) pair already exists."""
        return await asyncio.to_thread(self._append, message, self_user)

    async def select_window(
        self,
        message: Message,
        budget: Optional[int] = None,
        row_cap: Optional[int] = None,
    ) -> List[ChatHistory]:
        """Prior messages of the chat that fit the budget, oldest first."""
        return await asyncio.to_thread(
            self._select_window,
            message.chat.id,
            message.message_id,
            self.context_char_budget if budget is None else budget,
            self.context_row_cap if row_cap is None else row_cap,
        )

    async def delete_older_than(self, cutoff: datetime) -> int:
        return await asyncio.to_thread(self._delete_older_than, to_naive_utc(cutoff))

    @staticmethod
    def to_record(message: Message, self_user: User) -> ChatHistory:
        sender = message.from_user
        return ChatHistory(
            message_id=message.message_id,
            chat_id=message.chat.id,
            message_thread_id=message.message_thread_id,
            reply_to_message_id=(
                message.reply_to_message.message_id if message.reply_to_message else None
            ),
            date=to_naive_utc(message.date),
            from_user_id=sender.id if sender else None,
            from_username=sender.username if sender else None,
            from_first_name=sender.first_name if sender else None,
            from_last_name=sender.last_name if sender else None,
            text=message.text,
            caption=message.caption,
            is_llm_reply_to_message=sender is not None and sender.id == self_user.id,
        )

    def _append(self, message: Message, self_user: User) -> ChatHistory:
        record = self.to_record(message, self_user)
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            session.expunge(record)
        return record

    def _select_window(
        self, chat_id: int, message_id: int, budget: int, row_cap: int
    ) -> List[ChatHistory]:
        with Session(self.engine) as session:
            cutoff = session.exec(
                select(ChatHistory.date).where(
                    ChatHistory.chat_id == chat_id,
                    ChatHistory.message_id == message_id,
                )
            ).first()
            if cutoff is None:
                cutoff = utc_now()
                logger.warning(
                    f"Message {message_id} in chat {chat_id} is not in the log yet, "
                    f"using the current time as the context cutoff"
                )

            content_length = func.coalesce(func.length(ChatHistory.text), 0) + func.coalesce(
                func.length(ChatHistory.caption), 0
            )
            # Most recent first; message_id breaks ties between equal dates
            newest_first = (ChatHistory.date.desc(), ChatHistory.message_id.desc())
            is_moderated = (
                select(KickedUser.user_id)
                .where(
                    KickedUser.chat_id == ChatHistory.chat_id,
                    KickedUser.user_id == ChatHistory.from_user_id,
                )
                .exists()
            )
            candidates = (
                select(
                    ChatHistory.id.label("row_id"),
                    func.sum(content_length)
                    .over(order_by=newest_first, rows=(None, 0))
                    .label("cumulative_length"),
                )
                .where(
                    ChatHistory.chat_id == chat_id,
                    ChatHistory.date <= cutoff,
                    ChatHistory.message_id != message_id,
                    ~is_moderated,
                )
                .order_by(*newest_first)
                .limit(row_cap)
                .subquery()
            )
            rows = session.exec(
                select(ChatHistory)
                .join(candidates, ChatHistory.id == candidates.c.row_id)
                .where(candidates.c.cumulative_length <= budget)
                .order_by(ChatHistory.date, ChatHistory.message_id)
            ).all()
            for row in rows:
                session.expunge(row)
        return list(rows)

    def _delete_older_than(self, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(delete(ChatHistory).where(ChatHistory.date < cutoff))
            session.commit()
            return result.rowcount
