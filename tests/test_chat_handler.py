# tests/test_chat_handler.py

import asyncio
import pytest
from unittest.mock import AsyncMock

from tg_assistant.core.markdown import escape_markdown
from tg_assistant.core.telegram_client import TelegramAPIError
from tg_assistant.data_schemas.requests import ChatWithLlmRequest
from tg_assistant.data_schemas.telegram import File, PhotoSize
from tg_assistant.services.chat_handler import (
    TRUNCATION_MARKER,
    ChatOutcome,
    LlmChatHandler,
    is_jpeg,
    render_reply,
    select_photo_size,
    truncate_reply,
)
from tg_assistant.services.llm_service import LLMService
from tg_assistant.services.message_log import MessageLog

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PHOTO = [
    {"file_id": "small", "width": 90, "height": 60},
    {"file_id": "large", "width": 1280, "height": 853},
]


@pytest.fixture
def message_log_mock():
    mock = AsyncMock(spec=MessageLog)
    mock.select_window.return_value = []
    return mock


@pytest.fixture
def llm_service():
    mock = AsyncMock(spec=LLMService)
    mock.get_response.return_value = "**Answer**"
    return mock


@pytest.fixture
def handler(telegram, message_log_mock, llm_service):
    return LlmChatHandler(
        telegram,
        message_log_mock,
        llm_service,
        default_response="Nothing to add.",
        max_reply_length=50,
    )


@pytest.fixture
def request_for(self_user):
    def _request_for(message):
        return ChatWithLlmRequest(message=message, self_user=self_user, prompt=message.prompt)

    return _request_for


def test_is_jpeg():
    assert is_jpeg(JPEG_BYTES)
    assert not is_jpeg(PNG_BYTES)
    assert not is_jpeg(b"\xff\xd8")
    assert not is_jpeg(None)


def test_truncate_reply():
    assert truncate_reply("short", 10) == "short"
    assert truncate_reply("x" * 12, 10) == "x" * 10 + TRUNCATION_MARKER


def test_render_reply_short_text_is_only_rendered():
    assert render_reply("hello.", 100) == "hello\\."


def test_render_reply_cuts_source_before_escaping():
    rendered = render_reply("." * 3000, 100)

    assert rendered == "\\." * 50 + escape_markdown(TRUNCATION_MARKER)
    body = rendered[: -len(escape_markdown(TRUNCATION_MARKER))]
    assert not body.endswith("\\\\") and body.endswith("\\.")


def test_select_photo_size_prefers_longest_side():
    landscape = [PhotoSize(**size) for size in PHOTO]
    portrait = [
        PhotoSize(file_id="a", width=60, height=90),
        PhotoSize(file_id="b", width=853, height=1280),
    ]

    assert select_photo_size(landscape).file_id == "large"
    assert select_photo_size(portrait).file_id == "b"
    assert select_photo_size([]) is None


@pytest.mark.asyncio
async def test_formatted_reply_is_sent_and_stored(
    handler, telegram, message_log_mock, llm_service, make_message, request_for, self_user
):
    message = make_message("@bot hi", message_id=5)
    request = request_for(message)

    outcome = await handler.handle(request)

    assert outcome == ChatOutcome.REPLIED
    message_log_mock.select_window.assert_awaited_once_with(message)
    llm_service.get_response.assert_awaited_once_with(request, [], None)
    telegram.send_message.assert_awaited_once()
    args, kwargs = telegram.send_message.call_args
    assert args == (message.chat.id, "*Answer*")
    assert kwargs["parse_mode"] == "MarkdownV2"
    assert kwargs["reply_to_message_id"] == 5
    sent = message_log_mock.append.call_args.args[0]
    assert sent.text == "*Answer*"
    assert message_log_mock.append.call_args.args[1] == self_user


@pytest.mark.asyncio
async def test_falls_back_to_plain_text_when_formatted_send_fails(
    handler, telegram, message_log_mock, make_message, request_for
):
    plain_send = telegram.send_message.side_effect

    async def _reject_markdown(chat_id, text, parse_mode=None, **kwargs):
        if parse_mode:
            raise TelegramAPIError("sendMessage", 400, "can't parse entities")
        return await plain_send(chat_id, text, parse_mode=parse_mode, **kwargs)

    telegram.send_message.side_effect = _reject_markdown

    outcome = await handler.handle(request_for(make_message("@bot hi")))

    assert outcome == ChatOutcome.REPLIED_PLAIN
    assert telegram.send_message.await_count == 2
    assert telegram.send_message.call_args.args[1] == "**Answer**"
    assert telegram.send_message.call_args.kwargs.get("parse_mode") is None
    message_log_mock.append.assert_awaited_once()


@pytest.mark.asyncio
async def test_falls_back_to_plain_text_when_rendering_fails(
    telegram, message_log_mock, llm_service, make_message, request_for
):
    def _broken_render(text):
        raise ValueError("unbalanced entities")

    handler = LlmChatHandler(
        telegram, message_log_mock, llm_service, "Nothing to add.", render=_broken_render
    )

    outcome = await handler.handle(request_for(make_message("@bot hi")))

    assert outcome == ChatOutcome.REPLIED_PLAIN
    telegram.send_message.assert_awaited_once()
    assert telegram.send_message.call_args.args[1] == "**Answer**"


@pytest.mark.asyncio
async def test_nothing_is_stored_when_both_sends_fail(
    handler, telegram, message_log_mock, make_message, request_for
):
    telegram.send_message.side_effect = TelegramAPIError("sendMessage", 403, "bot was kicked")

    outcome = await handler.handle(request_for(make_message("@bot hi")))

    assert outcome == ChatOutcome.UNDELIVERED
    assert telegram.send_message.await_count == 2
    message_log_mock.append.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_model_output_uses_default_response(
    handler, telegram, llm_service, make_message, request_for
):
    llm_service.get_response.return_value = "   \n"

    await handler.handle(request_for(make_message("@bot hi")))

    assert telegram.send_message.call_args.args[1] == "Nothing to add\\."


@pytest.mark.asyncio
async def test_long_reply_is_truncated(handler, telegram, llm_service, make_message, request_for):
    llm_service.get_response.return_value = "word " * 40

    await handler.handle(request_for(make_message("@bot hi")))

    sent_text = telegram.send_message.call_args.args[1]
    assert telegram.send_message.await_count == 1
    assert telegram.send_message.call_args.kwargs["parse_mode"] == "MarkdownV2"
    assert sent_text.endswith("\n\\(response cut\\)")
    assert len(sent_text) == 50 + len(escape_markdown(TRUNCATION_MARKER))


@pytest.mark.asyncio
async def test_model_failure_is_reported_as_plain_reply(
    handler, telegram, message_log_mock, llm_service, make_message, request_for
):
    llm_service.get_response.side_effect = RuntimeError("model endpoint unavailable")

    outcome = await handler.handle(request_for(make_message("@bot hi")))

    assert outcome == ChatOutcome.REPLIED_ERROR
    telegram.send_message.assert_awaited_once()
    assert telegram.send_message.call_args.args[1] == "model endpoint unavailable"
    assert telegram.send_message.call_args.kwargs.get("parse_mode") is None
    message_log_mock.append.assert_awaited_once()


@pytest.mark.asyncio
async def test_cancellation_sends_and_stores_nothing(
    handler, telegram, message_log_mock, llm_service, make_message, request_for
):
    llm_service.get_response.side_effect = asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await handler.handle(request_for(make_message("@bot hi")))

    telegram.send_message.assert_not_awaited()
    message_log_mock.append.assert_not_awaited()


@pytest.mark.asyncio
async def test_context_window_failure_propagates(
    handler, telegram, message_log_mock, make_message, request_for
):
    message_log_mock.select_window.side_effect = RuntimeError("database is locked")

    with pytest.raises(RuntimeError):
        await handler.handle(request_for(make_message("@bot hi")))

    telegram.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_jpeg_photo_is_passed_to_model(handler, telegram, llm_service, make_message, request_for):
    telegram.get_file.return_value = File(file_id="large", file_size=len(JPEG_BYTES), file_path="photos/1.jpg")
    telegram.download_file.return_value = JPEG_BYTES
    request = request_for(make_message(None, caption="@bot what is this?", photo=PHOTO))

    await handler.handle(request)

    telegram.get_file.assert_awaited_once_with("large")
    llm_service.get_response.assert_awaited_once_with(request, [], JPEG_BYTES)


@pytest.mark.asyncio
async def test_non_jpeg_photo_is_treated_as_no_image(
    handler, telegram, llm_service, make_message, request_for
):
    telegram.get_file.return_value = File(file_id="large", file_size=len(PNG_BYTES), file_path="photos/1.png")
    telegram.download_file.return_value = PNG_BYTES
    request = request_for(make_message(None, caption="@bot what is this?", photo=PHOTO))

    outcome = await handler.handle(request)

    assert outcome == ChatOutcome.REPLIED
    llm_service.get_response.assert_awaited_once_with(request, [], None)


@pytest.mark.asyncio
async def test_failed_photo_download_is_treated_as_no_image(
    handler, telegram, llm_service, make_message, request_for
):
    telegram.get_file.side_effect = TelegramAPIError("getFile", 400, "file is too big")
    request = request_for(make_message(None, caption="@bot what is this?", photo=PHOTO))

    outcome = await handler.handle(request)

    assert outcome == ChatOutcome.REPLIED
    llm_service.get_response.assert_awaited_once_with(request, [], None)


@pytest.mark.asyncio
async def test_truncated_formatted_reply_has_escaped_marker(
    handler, telegram, llm_service, make_message, request_for
):
    llm_service.get_response.return_value = "." * 3000

    outcome = await handler.handle(request_for(make_message("@bot hi")))

    assert outcome == ChatOutcome.REPLIED
    assert telegram.send_message.await_count == 1
    assert telegram.send_message.call_args.kwargs["parse_mode"] == "MarkdownV2"
    sent_text = telegram.send_message.call_args.args[1]
    assert sent_text == "\\." * 25 + escape_markdown(TRUNCATION_MARKER)
