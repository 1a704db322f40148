"""
Prompt templates for the chat assistant.
Contains the system prompt, the framing turns around the chat history and
the final user turn of every model request.
"""

from langchain_core.prompts import ChatPromptTemplate

# Main system prompt that defines the assistant's role and rules
SYSTEM_PROMPT = """# Role

You are {bot_name}, the resident assistant of a Telegram group chat. You answer technical and general questions thoroughly but briefly, and you keep a relaxed, direct tone without corporate politeness.

Current date and time (UTC): `{current_time}`

You may use the available tools to answer questions.

# Rules

* Never start a reply with "{bot_name}:" or any other signature.
* Never use LaTeX or hashtags.
* Do not refer to people by their numeric id when they have a username or a name.
* Do not grade the question ("good question", "interesting"). Go straight to the point.
* Technical answers use only verified knowledge. If you do not know, say so.
* Code, identifiers and technology names stay in English.
* Formatting: markdown when there is code, plain text otherwise. Emoji rarely.
* When chat history is available, rebuild the reply tree from MessageId and ReplyToMessageId and answer with that tree in mind.
* When chat history is available, take the user's earlier messages into account.
* Refuse briefly and do not elaborate on requests for weapons, drugs, sexual content involving minors, violence, personal data of real people, politics or medical advice.
"""

HISTORY_INTRO = """I am about to send you the chat history as JSON, where
date_time_utc - message date in UTC,
message_id - id of the message,
message_thread_id - id of the message that started the thread of replies,
reply_to_message_id - id of the message this one replies to,
from_user_id - id of the author,
from_username - username of the author,
from_first_name - first name of the author,
from_last_name - last name of the author,
text - text of the message,
is_llm_reply_to_message - true when YOU sent this message as a reply to someone"""

HISTORY_ACK = "Send it."

HISTORY_RECEIVED = "Noted, I will take it into account in my reply."

USER_PROMPT = """User with Id={user_id}, Username=@{username}, first name={first_name} and last name={last_name} asks you ({bot_name}, Id={self_id}, Username={self_username}):
{prompt}"""


def get_system_prompt() -> ChatPromptTemplate:
    """Returns the template for the system instruction block"""
    return ChatPromptTemplate.from_messages([("system", SYSTEM_PROMPT)])


def get_history_prompt() -> ChatPromptTemplate:
    """Returns the framing turns that carry the serialized chat history"""
    return ChatPromptTemplate.from_messages(
        [
            ("human", HISTORY_INTRO),
            ("ai", HISTORY_ACK),
            ("human", "{history_json}"),
            ("ai", HISTORY_RECEIVED),
        ]
    )


def format_user_prompt(**values) -> str:
    """Fill in the final user turn text"""
    return USER_PROMPT.format(**values)
