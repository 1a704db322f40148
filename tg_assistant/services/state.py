from datetime import datetime
from typing import Annotated, List, Optional

from langchain_core.messages import AnyMessage
from langgraph.graph.message import add_messages
from pydantic import BaseModel, ConfigDict, Field


class ChatState(BaseModel):
    """
    The state object of the model workflow.

    `messages` starts as the assembled context (system block, history
    framing turns, user turn) and grows with every model reply and tool
    result until the model answers without requesting a tool.
    """

    messages: Annotated[List[AnyMessage], add_messages] = Field(default_factory=list)


class HistoryEntry(BaseModel):
    """One context-window message as the model sees it in the history JSON."""

    model_config = ConfigDict(frozen=True)

    date_time_utc: datetime
    message_id: int
    message_thread_id: Optional[int] = None
    reply_to_message_id: Optional[int] = None
    from_user_id: Optional[int] = None
    from_username: Optional[str] = None
    from_first_name: Optional[str] = None
    from_last_name: Optional[str] = None
    text: Optional[str] = None
    is_llm_reply_to_message: bool = False
