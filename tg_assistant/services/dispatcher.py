# tg_assistant/services/dispatcher.py

import logging
from typing import Awaitable, Callable, Dict

from tg_assistant.data_schemas.requests import (
    ChatWithLlmRequest,
    Classification,
    CommandKind,
    Intent,
)
from tg_assistant.data_schemas.telegram import Message, User
from tg_assistant.services.message_log import MessageLog
from tg_assistant.services.request_queue import LlmRequestQueue

logger = logging.getLogger(__name__)

ALLOWED_MESSAGE_KINDS = ("text", "photo")


def classify(message: Message, self_user: User, bot_name: str) -> Classification:
    """Decide whether a message is a command, a model request or noise.

    Commands are exact matches on the trimmed, lowercased text and win over
    everything else. Private chats always reach the model. Group messages
    reach it only when they start with the assistant handle or reply to a
    message the assistant wrote.
    """
    if message.kind not in ALLOWED_MESSAGE_KINDS:
        return Classification(intent=Intent.IGNORE, reason="unsupported_message_type")

    command = CommandKind.parse(message.text)
    if command is not None:
        return Classification(intent=Intent.COMMAND, command=command)

    prompt = message.prompt
    if message.chat.is_private:
        return Classification(intent=Intent.CHAT_WITH_LLM, prompt=prompt)

    if message.chat.is_group:
        if prompt is not None and prompt.lower().startswith(bot_name.lower()):
            return Classification(intent=Intent.CHAT_WITH_LLM, prompt=prompt)
        replied_to = message.reply_to_message
        if replied_to is not None and replied_to.from_user is not None:
            if replied_to.from_user.id == self_user.id:
                return Classification(intent=Intent.CHAT_WITH_LLM, prompt=prompt)
        return Classification(intent=Intent.IGNORE, reason="not_addressed")

    return Classification(intent=Intent.IGNORE, reason="unsupported_chat_type")


class CommandDispatcher:
    """Routes an admitted message to a command handler or the request queue"""

    def __init__(
        self,
        message_log: MessageLog,
        queue: LlmRequestQueue,
        command_handlers: Dict[CommandKind, Callable[[Message], Awaitable[None]]],
        self_user: User,
        bot_name: str,
    ):
        missing = [kind.value for kind in CommandKind if kind not in command_handlers]
        if missing:
            raise ValueError(f"No handler registered for command(s): {', '.join(missing)}")
        self.message_log = message_log
        self.queue = queue
        self.command_handlers = dict(command_handlers)
        self.self_user = self_user
        self.bot_name = bot_name

    async def handle_message(self, message: Message) -> dict:
        if message.kind not in ALLOWED_MESSAGE_KINDS:
            return {"status": "ignored", "reason": "unsupported_message_type"}

        # Stored before classification so later context windows see every message
        await self.message_log.append(message, self.self_user)

        classification = classify(message, self.self_user, self.bot_name)

        if classification.intent == Intent.COMMAND:
            logger.info(
                f"Running command {classification.command.value} "
                f"for message {message.message_id} in chat {message.chat.id}"
            )
            await self.command_handlers[classification.command](message)
            return {"status": "success", "command": classification.command.value}

        if classification.intent == Intent.CHAT_WITH_LLM:
            request = ChatWithLlmRequest(
                message=message, self_user=self.self_user, prompt=classification.prompt
            )
            if self.queue.offer(request):
                return {"status": "queued"}
            return {"status": "dropped"}

        return {"status": "ignored", "reason": classification.reason}
