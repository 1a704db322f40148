# tg_assistant/services/retention.py

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from tg_assistant.services.message_log import MessageLog

logger = logging.getLogger(__name__)


class MessageRetention:
    """Periodically deletes log rows older than the retention period.

    Moderation entries are untouched; only message records expire.
    """

    def __init__(self, message_log: MessageLog, retention_days: int, interval_seconds: float = 3600):
        self.message_log = message_log
        self.retention_days = retention_days
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.retention_days > 0

    async def cleanup(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.retention_days)
        deleted = await self.message_log.delete_older_than(cutoff)
        if deleted:
            logger.info(f"Deleted {deleted} message(s) older than {cutoff.isoformat()}")
        return deleted

    def start(self) -> None:
        if not self.enabled:
            logger.info("Message retention disabled")
            return
        self._task = asyncio.create_task(self._run(), name="message-retention")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.cleanup()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Message retention cleanup failed")
            await asyncio.sleep(self.interval_seconds)
