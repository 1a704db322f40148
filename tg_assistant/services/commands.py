# tg_assistant/services/commands.py

import logging
import unicodedata
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from tg_assistant.core.config import Settings
from tg_assistant.core.markdown import to_telegram_markdown
from tg_assistant.core.telegram_client import TelegramClient
from tg_assistant.core.usage_client import UsageClient
from tg_assistant.data_schemas.requests import CommandKind
from tg_assistant.data_schemas.telegram import Message
from tg_assistant.models import ChatHistory
from tg_assistant.services.message_log import MessageLog

logger = logging.getLogger(__name__)

CommandHandler = Callable[[Message], Awaitable[None]]

RATING_TOP_USERS = 5


class UserActivity(BaseModel):
    user_id: int
    display_name: str
    message_count: int
    score: float


def _display_name(record: ChatHistory) -> str:
    if record.from_username:
        return f"@{record.from_username}"
    name = " ".join(part for part in (record.from_first_name, record.from_last_name) if part)
    return name or str(record.from_user_id)


def message_score(text: str) -> Optional[float]:
    """Heuristic low-effort score of one message; None for empty text."""
    if not text or not text.strip():
        return None

    score = 0.0
    if len(text) <= 10:
        score += 30
    elif len(text) <= 20:
        score += 15

    emoji_count = sum(1 for char in text if unicodedata.category(char) in ("So", "Sk"))
    score += emoji_count / len(text) * 50

    if text.count("!") > 2 or text.count("?") > 2:
        score += 10

    letters = [char for char in text if char.isalpha()]
    if len(letters) > 5 and sum(1 for char in letters if char.isupper()) > len(letters) * 0.7:
        score += 20

    return score


def rank_activity(history: List[ChatHistory]) -> List[UserActivity]:
    """Rank participants of a context window by average message score."""
    grouped: Dict[int, List[ChatHistory]] = {}
    for record in history:
        if record.is_llm_reply_to_message or record.from_user_id is None:
            continue
        grouped.setdefault(record.from_user_id, []).append(record)

    ranking = []
    for user_id, records in grouped.items():
        scores = [
            score
            for score in (message_score(r.text if r.text is not None else r.caption) for r in records)
            if score is not None
        ]
        ranking.append(
            UserActivity(
                user_id=user_id,
                display_name=_display_name(records[-1]),
                message_count=len(records),
                score=sum(scores) / len(scores) if scores else 0.0,
            )
        )
    ranking.sort(key=lambda activity: (-activity.score, -activity.message_count))
    return ranking


class CommandHandlers:
    """Handlers for the structured commands, one per CommandKind"""

    def __init__(
        self,
        telegram: TelegramClient,
        message_log: MessageLog,
        config: Settings,
        usage_client: Optional[UsageClient] = None,
    ):
        self.telegram = telegram
        self.message_log = message_log
        self.config = config
        self.usage_client = usage_client or UsageClient(config.USAGE_API_URL, config.LLM_API_KEY)
        self.help_text = self.build_help_text(config.BOT_NAME)

    def table(self) -> Dict[CommandKind, CommandHandler]:
        return {
            CommandKind.HELP: self.display_help,
            CommandKind.PING: self.ping,
            CommandKind.MODEL: self.model_info,
            CommandKind.REPO: self.repo_link,
            CommandKind.USAGE: self.usage,
            CommandKind.RATING: self.rating,
        }

    @staticmethod
    def build_help_text(bot_name: str) -> str:
        lines = [
            f"`{bot_name}` - prefix for asking the LLM a question",
            "",
            "`!ping` - check that the bot is alive",
            "`!model` - show the LLM in use and the endpoint requests go to",
            "`!repo` - link to the bot's source code",
            "`!usage` - API key usage statistics",
            "`!rating` - rank the most active participants of the chat",
        ]
        return to_telegram_markdown("\n".join(lines))

    async def reply(self, message: Message, text: str, parse_mode: Optional[str] = None) -> None:
        await self.telegram.send_message(
            message.chat.id,
            text,
            parse_mode=parse_mode,
            reply_to_message_id=message.message_id,
            message_thread_id=message.message_thread_id,
        )

    async def display_help(self, message: Message) -> None:
        await self.reply(message, self.help_text, parse_mode="MarkdownV2")

    async def ping(self, message: Message) -> None:
        await self.reply(message, "pong")

    async def model_info(self, message: Message) -> None:
        text = to_telegram_markdown(
            f"Model: `{self.config.LLM_MODEL}`\nEndpoint: `{self.config.LLM_ENDPOINT}`"
        )
        await self.reply(message, text, parse_mode="MarkdownV2")

    async def repo_link(self, message: Message) -> None:
        if not self.config.REPO_URL:
            await self.reply(message, "Repository link is not configured.")
            return
        await self.reply(message, self.config.REPO_URL)

    async def usage(self, message: Message) -> None:
        try:
            usage = await self.usage_client.get_key_usage()
        except Exception as e:
            logger.error(f"Failed to fetch API key usage: {e}")
            await self.reply(message, "Could not fetch usage statistics right now.")
            return

        limit = f"${usage.limit:.2f}" if usage.limit is not None else "unlimited"
        lines = [f"Usage: ${usage.usage:.2f}", f"Limit: {limit}"]
        if usage.limit_remaining is not None:
            lines.append(f"Remaining: ${usage.limit_remaining:.2f}")
        if usage.is_free_tier:
            lines.append("Free tier key")
        await self.reply(message, "\n".join(lines))

    async def rating(self, message: Message) -> None:
        history = await self.message_log.select_window(message)
        ranking = rank_activity(history)
        if not ranking:
            await self.reply(message, "Not enough messages to build a rating.")
            return

        total = sum(activity.message_count for activity in ranking)
        lines = [f"**Activity rating** over the last {len(history)} messages", ""]
        for place, activity in enumerate(ranking[:RATING_TOP_USERS], 1):
            share = activity.message_count * 100.0 / total
            lines.append(
                f"{place}. {activity.display_name}: score {activity.score:.1f}, "
                f"messages {activity.message_count} ({share:.1f}%)"
            )
        await self.reply(message, to_telegram_markdown("\n".join(lines)), parse_mode="MarkdownV2")
