# tg_assistant/services/worker.py

import asyncio
import logging
from typing import List, Optional

from tg_assistant.services.chat_handler import LlmChatHandler
from tg_assistant.services.request_queue import LlmRequestQueue, QueueClosed

logger = logging.getLogger(__name__)


class LlmRequestWorkerPool:
    """Workers draining the request queue, one request at a time each.

    Shutdown closes the queue, lets the workers finish what is already
    queued for up to `drain_timeout` seconds, then cancels whatever is
    left. A cancelled request sends and stores nothing.
    """

    def __init__(self, queue: LlmRequestQueue, handler: LlmChatHandler, worker_count: int = 1):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.queue = queue
        self.handler = handler
        self.worker_count = worker_count
        self.processed = 0
        self.failed = 0
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self._tasks:
            raise RuntimeError("Worker pool already started")
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"llm-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} LLM request worker(s)")

    async def stop(self, drain_timeout: Optional[float] = 30.0) -> None:
        """Close admission, drain queued requests, then abandon the rest."""
        self.queue.close()
        if not self._tasks:
            return

        pending = self._tasks
        if drain_timeout is None or drain_timeout > 0:
            _, pending = await asyncio.wait(self._tasks, timeout=drain_timeout)
        if pending:
            abandoned = self.queue.abandon()
            logger.warning(
                f"Drain timed out, cancelling {len(pending)} worker(s) "
                f"and abandoning {abandoned} queued request(s)"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        else:
            logger.info("LLM request queue drained")
        self._tasks = []

    async def _run(self, index: int) -> None:
        while True:
            try:
                request = await self.queue.get()
            except QueueClosed:
                logger.debug(f"Worker {index} stopping, queue closed")
                return
            await self.process(request)

    async def process(self, request) -> None:
        """Handle one request, keeping its failure away from the loop."""
        try:
            await self.handler.handle(request)
            self.processed += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed += 1
            logger.exception(
                f"Failed to process LLM request for message {request.message.message_id} "
                f"in chat {request.message.chat.id}"
            )

    def stats(self) -> dict:
        stats = self.queue.stats()
        stats.update(
            {
                "workers": self.worker_count,
                "running": self.running,
                "processed": self.processed,
                "failed": self.failed,
            }
        )
        return stats
