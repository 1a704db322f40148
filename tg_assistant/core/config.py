# tg_assistant/core/config.py

import logging
import sys
import os

# Check if running in cloud environment (like Azure)
# If not, assume local development and try to load .env
if os.getenv("WEBSITE_SITE_NAME") is None:
    try:
        from dotenv import load_dotenv

        # Load environment variables from .env file in the project root
        dotenv_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        load_dotenv(dotenv_path=dotenv_path)
    except Exception as e:
        print(f"Error loading .env file: {e}")


def _parse_chat_ids(raw: str) -> frozenset:
    """Parse a comma-separated list of chat ids, skipping blanks."""
    chat_ids = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            chat_ids.add(int(part))
        except ValueError:
            logging.error(f"Ignoring invalid chat id in ALLOWED_CHAT_IDS: {part!r}")
    return frozenset(chat_ids)


def _optional_float(name: str):
    value = os.getenv(name)
    return float(value) if value else None


def _optional_int(name: str):
    value = os.getenv(name)
    return int(value) if value else None


class Settings:
    """Simple settings object to hold configuration values"""

    def __init__(self):
        # Telegram
        self.TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
        self.TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")
        self.TELEGRAM_WEBHOOK_URL = os.getenv("TELEGRAM_WEBHOOK_URL", "")
        self.TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
        self.BOT_NAME = os.getenv("BOT_NAME", "@bot")
        self.ALLOWED_CHAT_IDS = _parse_chat_ids(os.getenv("ALLOWED_CHAT_IDS", ""))
        self.SKIP_MESSAGES_OLDER_THAN_SECONDS = int(
            os.getenv("SKIP_MESSAGES_OLDER_THAN_SECONDS", "0")
        )
        self.DEFAULT_RESPONSE = os.getenv(
            "DEFAULT_RESPONSE", "I have nothing to say to that."
        )

        # LLM
        self.LLM_ENDPOINT = os.getenv("LLM_ENDPOINT", "https://openrouter.ai/api/v1")
        self.LLM_API_KEY = os.getenv("LLM_API_KEY")
        self.LLM_MODEL = os.getenv("LLM_MODEL", "openai/gpt-4o-mini")
        self.LLM_TEMPERATURE = _optional_float("LLM_TEMPERATURE")
        self.LLM_TOP_P = _optional_float("LLM_TOP_P")
        self.LLM_TOP_K = _optional_int("LLM_TOP_K")
        self.LLM_MAX_OUTPUT_TOKENS = _optional_int("LLM_MAX_OUTPUT_TOKENS")
        self.LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

        # Request pipeline
        self.LLM_REQUEST_QUEUE_CAPACITY = int(os.getenv("LLM_REQUEST_QUEUE_CAPACITY", "20"))
        self.LLM_WORKER_COUNT = int(os.getenv("LLM_WORKER_COUNT", "1"))
        self.SHUTDOWN_DRAIN_TIMEOUT_SECONDS = float(
            os.getenv("SHUTDOWN_DRAIN_TIMEOUT_SECONDS", "30")
        )
        self.CONTEXT_CHAR_BUDGET = int(os.getenv("CONTEXT_CHAR_BUDGET", "30000"))
        self.CONTEXT_ROW_CAP = int(os.getenv("CONTEXT_ROW_CAP", "200"))
        self.MAX_REPLY_LENGTH = int(os.getenv("MAX_REPLY_LENGTH", "4000"))

        # Storage
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tg_assistant.db")
        self.MESSAGE_RETENTION_DAYS = int(os.getenv("MESSAGE_RETENTION_DAYS", "0"))
        self.MESSAGE_CLEANUP_INTERVAL_SECONDS = float(
            os.getenv("MESSAGE_CLEANUP_INTERVAL_SECONDS", "3600")
        )

        # Commands
        self.REPO_URL = os.getenv("REPO_URL", "")
        self.USAGE_API_URL = os.getenv("USAGE_API_URL", "https://openrouter.ai/api/v1/key")
        self.ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "admin_secret_key")

        # Tracing
        self.LANGCHAIN_API_KEY = os.getenv("LANGCHAIN_API_KEY")
        self.LANGCHAIN_TRACING = os.getenv("LANGCHAIN_TRACING", "false")
        self.LANGCHAIN_PROJECT = os.getenv("LANGCHAIN_PROJECT", "tg-assistant")

        if not self.TELEGRAM_BOT_TOKEN:
            logging.error("CRITICAL: TELEGRAM_BOT_TOKEN environment variable not set.")
        if not self.LLM_API_KEY:
            logging.error("CRITICAL: LLM_API_KEY environment variable not set.")
        if not self.ALLOWED_CHAT_IDS:
            logging.warning("ALLOWED_CHAT_IDS is empty, every chat will be ignored.")


def configure_logging():
    """Configure application logging"""
    # Request logs from the HTTP clients include the bot token in the URL
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


# Create global settings instance
settings = Settings()
