# tg_assistant/data_schemas/telegram.py

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Literal, Optional


class TelegramModel(BaseModel):
    """Base for Bot API objects: immutable, unknown fields ignored"""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class User(TelegramModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


class Chat(TelegramModel):
    id: int
    type: str  # private, group, supergroup or channel
    title: Optional[str] = None
    username: Optional[str] = None

    @property
    def is_private(self) -> bool:
        return self.type == "private"

    @property
    def is_group(self) -> bool:
        return self.type in ("group", "supergroup")


class PhotoSize(TelegramModel):
    file_id: str
    file_unique_id: Optional[str] = None
    width: int
    height: int
    file_size: Optional[int] = None


class File(TelegramModel):
    file_id: str
    file_unique_id: Optional[str] = None
    file_size: Optional[int] = None
    file_path: Optional[str] = None


class Message(TelegramModel):
    message_id: int
    message_thread_id: Optional[int] = None
    date: datetime  # Bot API sends unix time, parsed as aware UTC
    chat: Chat
    from_user: Optional[User] = Field(default=None, alias="from")
    reply_to_message: Optional["Message"] = None
    text: Optional[str] = None
    caption: Optional[str] = None
    photo: Optional[List[PhotoSize]] = None

    @property
    def kind(self) -> Literal["text", "photo", "other"]:
        if self.text is not None:
            return "text"
        if self.photo:
            return "photo"
        return "other"

    @property
    def prompt(self) -> Optional[str]:
        """Text of the message, or its caption when there is no text."""
        return self.text if self.text is not None else self.caption


class ChatMember(TelegramModel):
    status: str  # creator, administrator, member, restricted, left or kicked
    user: User


class ChatMemberUpdated(TelegramModel):
    chat: Chat
    from_user: Optional[User] = Field(default=None, alias="from")
    date: datetime
    old_chat_member: ChatMember
    new_chat_member: ChatMember


class Update(TelegramModel):
    update_id: int
    message: Optional[Message] = None
    chat_member: Optional[ChatMemberUpdated] = None


Message.model_rebuild()
