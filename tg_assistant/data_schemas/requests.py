# tg_assistant/data_schemas/requests.py

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tg_assistant.data_schemas.telegram import Message, User


class CommandKind(str, Enum):
    """Exact command tokens, matched against trimmed lowercase text"""

    HELP = "!help"
    PING = "!ping"
    MODEL = "!model"
    REPO = "!repo"
    USAGE = "!usage"
    RATING = "!rating"

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["CommandKind"]:
        if text is None:
            return None
        try:
            return cls(text.strip().lower())
        except ValueError:
            return None


class Intent(str, Enum):
    COMMAND = "command"
    CHAT_WITH_LLM = "chat_with_llm"
    IGNORE = "ignore"


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: Intent
    command: Optional[CommandKind] = None
    prompt: Optional[str] = None
    reason: Optional[str] = None


class ChatWithLlmRequest(BaseModel):
    """A classified model request, owned by the queue and then by one worker"""

    model_config = ConfigDict(frozen=True)

    message: Message
    self_user: User
    prompt: Optional[str] = None
