import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from tg_assistant.core.config import Settings, settings, configure_logging
from tg_assistant.core.database import init_db, engine as default_engine
from tg_assistant.core.telegram_client import TelegramClient
from tg_assistant.core.usage_client import UsageClient
from tg_assistant.routes.admin import router as admin_router
from tg_assistant.routes.monitoring import router as monitoring_router
from tg_assistant.routes.webhook import router as webhook_router
from tg_assistant.services.chat_handler import LlmChatHandler
from tg_assistant.services.commands import CommandHandlers
from tg_assistant.services.dispatcher import CommandDispatcher
from tg_assistant.services.llm_service import LLMService
from tg_assistant.services.message_log import MessageLog
from tg_assistant.services.moderation import ModerationSet
from tg_assistant.services.request_handler import TelegramUpdateHandler
from tg_assistant.services.request_queue import LlmRequestQueue
from tg_assistant.services.retention import MessageRetention
from tg_assistant.services.worker import LlmRequestWorkerPool

logger = logging.getLogger(__name__)


def create_app(
    config: Settings = None,
    telegram_client: TelegramClient = None,
    llm_service: LLMService = None,
    db_engine: Engine = None,
    usage_client: UsageClient = None,
):
    config = config or settings
    db_engine = db_engine or default_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Configure logging
        configure_logging()

        # Initialize database
        init_db(db_engine)

        started_at = datetime.now(timezone.utc)
        telegram = telegram_client or TelegramClient(
            config.TELEGRAM_BOT_TOKEN, api_base=config.TELEGRAM_API_BASE
        )

        # Resolved once, before any component that needs it is built
        self_user = await telegram.get_me()
        logger.info(f"Running as @{self_user.username} ({self_user.id})")

        message_log = MessageLog(
            db_engine,
            context_char_budget=config.CONTEXT_CHAR_BUDGET,
            context_row_cap=config.CONTEXT_ROW_CAP,
        )
        moderation = ModerationSet(db_engine)
        queue = LlmRequestQueue(config.LLM_REQUEST_QUEUE_CAPACITY)
        chat_handler = LlmChatHandler(
            telegram,
            message_log,
            llm_service or LLMService(config),
            default_response=config.DEFAULT_RESPONSE,
            max_reply_length=config.MAX_REPLY_LENGTH,
        )
        worker_pool = LlmRequestWorkerPool(queue, chat_handler, config.LLM_WORKER_COUNT)
        commands = CommandHandlers(telegram, message_log, config, usage_client)
        dispatcher = CommandDispatcher(
            message_log, queue, commands.table(), self_user, config.BOT_NAME
        )
        stopping = asyncio.Event()
        update_handler = TelegramUpdateHandler(
            dispatcher,
            moderation,
            config.ALLOWED_CHAT_IDS,
            skip_older_than=TelegramUpdateHandler.skip_cutoff(
                started_at, config.SKIP_MESSAGES_OLDER_THAN_SECONDS
            ),
            stopping=stopping,
        )
        retention = MessageRetention(
            message_log,
            config.MESSAGE_RETENTION_DAYS,
            config.MESSAGE_CLEANUP_INTERVAL_SECONDS,
        )

        app.state.config = config
        app.state.self_user = self_user
        app.state.telegram = telegram
        app.state.message_log = message_log
        app.state.moderation = moderation
        app.state.worker_pool = worker_pool
        app.state.update_handler = update_handler

        if config.TELEGRAM_WEBHOOK_URL:
            await telegram.set_webhook(
                config.TELEGRAM_WEBHOOK_URL,
                secret_token=config.TELEGRAM_WEBHOOK_SECRET or None,
            )
            logger.info(f"Webhook registered at {config.TELEGRAM_WEBHOOK_URL}")

        worker_pool.start()
        retention.start()

        yield

        stopping.set()
        await worker_pool.stop(config.SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
        await retention.stop()
        await telegram.close()

    # Initialize FastAPI app
    app = FastAPI(title="Telegram LLM Assistant", lifespan=lifespan)
    app.state.config = config

    # Register routes
    app.include_router(webhook_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.get("/")
    def read_root():
        return {"message": "Hello, Telegram LLM Assistant"}

    return app
