# tg_assistant/models.py

from sqlmodel import SQLModel, Field
from sqlalchemy import BigInteger, DateTime, Index, UniqueConstraint
from datetime import datetime
from typing import Optional


class ChatHistory(SQLModel, table=True):
    """Append-only log of every message observed in an allowed chat"""

    __tablename__ = "chat_history"
    __table_args__ = (
        UniqueConstraint("chat_id", "message_id", name="uq_chat_history_chat_message"),
        Index("ix_chat_history_chat_date", "chat_id", "date"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: int
    chat_id: int = Field(sa_type=BigInteger)
    message_thread_id: Optional[int] = Field(default=None)
    reply_to_message_id: Optional[int] = Field(default=None)
    date: datetime = Field(sa_type=DateTime(timezone=False))  # naive UTC
    from_user_id: Optional[int] = Field(default=None, sa_type=BigInteger)
    from_username: Optional[str] = Field(default=None)
    from_first_name: Optional[str] = Field(default=None)
    from_last_name: Optional[str] = Field(default=None)
    text: Optional[str] = Field(default=None)
    caption: Optional[str] = Field(default=None)
    is_llm_reply_to_message: bool = Field(default=False)  # Sent by the assistant itself

    @property
    def content_length(self) -> int:
        return len(self.text or "") + len(self.caption or "")


class KickedUser(SQLModel, table=True):
    """Participants whose history is hidden from future context windows"""

    __tablename__ = "kicked_users"
    __table_args__ = {"extend_existing": True}

    chat_id: int = Field(sa_type=BigInteger, primary_key=True)
    user_id: int = Field(sa_type=BigInteger, primary_key=True)
