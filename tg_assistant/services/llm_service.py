# tg_assistant/services/llm_service.py

import base64
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from uuid import uuid4

from langchain_core.messages import BaseMessage, HumanMessage
from langchain_core.runnables import RunnableConfig
from langchain_core.tools import BaseTool
from langchain_core.tracers.langchain import LangChainTracer
from langchain_openai import ChatOpenAI
from langgraph.graph import END, START, StateGraph
from langgraph.prebuilt import ToolNode, tools_condition
from langsmith import Client

from tg_assistant.core.config import Settings, settings as default_settings
from tg_assistant.data_schemas.requests import ChatWithLlmRequest
from tg_assistant.data_schemas.telegram import User
from tg_assistant.models import ChatHistory
from tg_assistant.services.prompts import (
    format_user_prompt,
    get_history_prompt,
    get_system_prompt,
)
from tg_assistant.services.state import ChatState, HistoryEntry

logger = logging.getLogger(__name__)

# Upper bound on model/tool round trips for one request
MAX_WORKFLOW_STEPS = 25


def _trimmed(value: Optional[str]) -> Optional[str]:
    return value.strip() if value is not None else None


def message_text(message: BaseMessage) -> str:
    """Plain text of a model message, whether its content is a string or blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ToolsProvider:
    """Registry of tool definitions offered to the model"""

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None):
        self._tools: List[BaseTool] = list(tools or [])

    def add_tools(self, tools: Iterable[BaseTool]) -> None:
        self._tools.extend(tools)

    def get_tools(self) -> List[BaseTool]:
        return list(self._tools)


class LLMService:
    def __init__(
        self,
        config: Settings = None,
        tools_provider: Optional[ToolsProvider] = None,
        llm=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        config = config or default_settings
        self.bot_name = config.BOT_NAME
        self.model_name = config.LLM_MODEL
        self.endpoint = config.LLM_ENDPOINT
        self.tools_provider = tools_provider or ToolsProvider()
        self.llm = llm if llm is not None else self._create_llm(config)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.tracer = self._create_tracer(config)
        self.workflow = self._create_workflow_graph()

    @staticmethod
    def _create_llm(config: Settings) -> ChatOpenAI:
        options = {}
        if config.LLM_TEMPERATURE is not None:
            options["temperature"] = config.LLM_TEMPERATURE
        if config.LLM_TOP_P is not None:
            options["top_p"] = config.LLM_TOP_P
        if config.LLM_MAX_OUTPUT_TOKENS is not None:
            options["max_tokens"] = config.LLM_MAX_OUTPUT_TOKENS
        if config.LLM_TOP_K is not None:
            # Not part of the OpenAI schema, understood by OpenRouter and most local servers
            options["extra_body"] = {"top_k": config.LLM_TOP_K}
        return ChatOpenAI(
            model=config.LLM_MODEL,
            base_url=config.LLM_ENDPOINT,
            api_key=config.LLM_API_KEY,
            timeout=config.LLM_TIMEOUT_SECONDS,
            **options,
        )

    @staticmethod
    def _create_tracer(config: Settings) -> Optional[LangChainTracer]:
        """LangSmith tracer for workflow runs, when tracing is switched on"""
        if config.LANGCHAIN_TRACING.lower() != "true" or not config.LANGCHAIN_API_KEY:
            return None
        return LangChainTracer(
            project_name=config.LANGCHAIN_PROJECT,
            client=Client(api_key=config.LANGCHAIN_API_KEY),
        )

    def _create_workflow_graph(self):
        """Create the workflow graph: the model, plus a tool loop when tools exist"""
        tools = self.tools_provider.get_tools()
        model = self.llm.bind_tools(tools) if tools else self.llm

        async def call_model(state: ChatState, config: RunnableConfig):
            response = await model.ainvoke(state.messages, config)
            return {"messages": [response]}

        graph_builder = StateGraph(ChatState)
        graph_builder.add_node("call_model", call_model)
        graph_builder.add_edge(START, "call_model")

        if tools:
            graph_builder.add_node("tools", ToolNode(tools))
            graph_builder.add_conditional_edges(
                "call_model", tools_condition, {"tools": "tools", END: END}
            )
            graph_builder.add_edge("tools", "call_model")
        else:
            graph_builder.add_edge("call_model", END)

        return graph_builder.compile()

    def build_context(
        self,
        request: ChatWithLlmRequest,
        context_messages: List[ChatHistory],
        jpeg_image: Optional[bytes] = None,
    ) -> List[BaseMessage]:
        """Assemble the role-tagged turns sent to the model"""
        current_time = self.clock().astimezone(timezone.utc).replace(microsecond=0)
        messages = get_system_prompt().format_messages(
            bot_name=self.bot_name, current_time=current_time.isoformat()
        )
        if context_messages:
            messages.extend(
                get_history_prompt().format_messages(
                    history_json=self.serialize_history(context_messages)
                )
            )
        messages.append(self.build_user_message(request, jpeg_image))
        return messages

    @staticmethod
    def serialize_history(context_messages: List[ChatHistory]) -> str:
        entries = [
            HistoryEntry(
                date_time_utc=record.date.replace(tzinfo=timezone.utc),
                message_id=record.message_id,
                message_thread_id=record.message_thread_id,
                reply_to_message_id=record.reply_to_message_id,
                from_user_id=record.from_user_id,
                from_username=_trimmed(record.from_username),
                from_first_name=_trimmed(record.from_first_name),
                from_last_name=_trimmed(record.from_last_name),
                text=_trimmed(record.text if record.text is not None else record.caption),
                is_llm_reply_to_message=record.is_llm_reply_to_message,
            ).model_dump(mode="json")
            for record in context_messages
        ]
        return json.dumps(entries, ensure_ascii=False, separators=(",", ":"))

    def build_user_message(
        self, request: ChatWithLlmRequest, jpeg_image: Optional[bytes] = None
    ) -> HumanMessage:
        sender = request.message.from_user or User(id=0)
        text = format_user_prompt(
            user_id=sender.id,
            username=_trimmed(sender.username) or "",
            first_name=_trimmed(sender.first_name) or "",
            last_name=_trimmed(sender.last_name) or "",
            bot_name=self.bot_name,
            self_id=request.self_user.id,
            self_username=_trimmed(request.self_user.username) or "",
            prompt=_trimmed(request.prompt) or "",
        )
        content = []
        if jpeg_image is not None:
            encoded = base64.b64encode(jpeg_image).decode("ascii")
            content.append(
                {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}}
            )
        content.append({"type": "text", "text": text})
        return HumanMessage(content=content)

    async def get_response(
        self,
        request: ChatWithLlmRequest,
        context_messages: List[ChatHistory],
        jpeg_image: Optional[bytes] = None,
    ) -> str:
        """Run the workflow for one request and return the final reply text"""
        messages = self.build_context(request, context_messages, jpeg_image)
        conversation_id = uuid4().hex
        logger.debug(
            f"Invoking {self.model_name} for conversation {conversation_id} "
            f"with {len(context_messages)} history message(s)"
        )
        result = await self.workflow.ainvoke(
            {"messages": messages},
            config={
                "run_name": "chat_with_llm",
                "metadata": {
                    "conversation_id": conversation_id,
                    "chat_id": request.message.chat.id,
                    "message_id": request.message.message_id,
                },
                "recursion_limit": MAX_WORKFLOW_STEPS,
                "callbacks": [self.tracer] if self.tracer else [],
            },
        )
        return message_text(result["messages"][-1])
