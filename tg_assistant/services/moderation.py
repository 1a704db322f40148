# tg_assistant/services/moderation.py

import asyncio
import logging
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, delete, select

from tg_assistant.core.database import engine as default_engine
from tg_assistant.data_schemas.telegram import ChatMemberUpdated
from tg_assistant.models import KickedUser

logger = logging.getLogger(__name__)

KICKED = "kicked"


class ModerationSet:
    """Set of (chat, participant) pairs excluded from future context windows.

    Adding and removing are idempotent and never touch the message log.
    """

    def __init__(self, db_engine: Engine = None):
        self.engine = db_engine or default_engine

    async def add(self, chat_id: int, user_id: int) -> bool:
        """Returns True when the pair was not present before."""
        return await asyncio.to_thread(self._add, chat_id, user_id)

    async def remove(self, chat_id: int, user_id: int) -> bool:
        """Returns True when a pair was actually removed."""
        return await asyncio.to_thread(self._remove, chat_id, user_id)

    async def contains(self, chat_id: int, user_id: int) -> bool:
        return await asyncio.to_thread(self._contains, chat_id, user_id)

    async def list_users(self, chat_id: int) -> List[int]:
        return await asyncio.to_thread(self._list_users, chat_id)

    async def apply_member_update(self, update: ChatMemberUpdated) -> Optional[str]:
        """Follow a membership transition into or out of the kicked state.

        Returns "added", "removed" or None when the transition is irrelevant.
        """
        chat_id = update.chat.id
        user_id = update.new_chat_member.user.id
        if update.new_chat_member.status == KICKED:
            await self.add(chat_id, user_id)
            logger.info(f"User {user_id} kicked from chat {chat_id}, hiding their history")
            return "added"
        if update.old_chat_member.status == KICKED:
            await self.remove(chat_id, user_id)
            logger.info(f"User {user_id} no longer kicked from chat {chat_id}")
            return "removed"
        return None

    def _add(self, chat_id: int, user_id: int) -> bool:
        with Session(self.engine) as session:
            if session.get(KickedUser, (chat_id, user_id)) is not None:
                return False
            session.add(KickedUser(chat_id=chat_id, user_id=user_id))
            try:
                session.commit()
            except IntegrityError:
                # Inserted concurrently by another writer
                session.rollback()
                return False
        return True

    def _remove(self, chat_id: int, user_id: int) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                delete(KickedUser).where(
                    KickedUser.chat_id == chat_id, KickedUser.user_id == user_id
                )
            )
            session.commit()
            return result.rowcount > 0

    def _contains(self, chat_id: int, user_id: int) -> bool:
        with Session(self.engine) as session:
            return session.get(KickedUser, (chat_id, user_id)) is not None

    def _list_users(self, chat_id: int) -> List[int]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(KickedUser.user_id)
                    .where(KickedUser.chat_id == chat_id)
                    .order_by(KickedUser.user_id)
                ).all()
            )
