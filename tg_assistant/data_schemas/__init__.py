from .telegram import Chat, ChatMember, ChatMemberUpdated, File, Message, PhotoSize, Update, User
from .requests import ChatWithLlmRequest, Classification, CommandKind, Intent
from tg_assistant.models import ChatHistory, KickedUser

__all__ = [
    "Chat",
    "ChatMember",
    "ChatMemberUpdated",
    "File",
    "Message",
    "PhotoSize",
    "Update",
    "User",
    "ChatWithLlmRequest",
    "Classification",
    "CommandKind",
    "Intent",
    "ChatHistory",
    "KickedUser",
]
