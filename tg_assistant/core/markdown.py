# tg_assistant/core/markdown.py

import re

# Characters that must be escaped everywhere outside entities in MarkdownV2
_SPECIAL_CHARS = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")
_CODE_CHARS = re.compile(r"([`\\])")
_URL_CHARS = re.compile(r"([)\\])")

_HEADING = re.compile(r"(?m)^#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$")

_TOKEN = re.compile(
    r"```(?P<lang>[\w+\-]*)[ \t]*\n?(?P<block>.*?)```"
    r"|`(?P<code>[^`\n]+)`"
    r"|\*\*(?P<bold>[^\n]+?)\*\*"
    r"|\[(?P<label>[^\]\n]+)\]\((?P<url>[^)\s]+)\)",
    re.DOTALL,
)


def escape_markdown(text: str) -> str:
    """Escape text so MarkdownV2 shows it literally."""
    return _SPECIAL_CHARS.sub(r"\\\1", text)


def _render_plain(text: str) -> str:
    parts = []
    last = 0
    for match in _HEADING.finditer(text):
        parts.append(escape_markdown(text[last:match.start()]))
        parts.append(f"*{escape_markdown(match.group(1))}*")
        last = match.end()
    parts.append(escape_markdown(text[last:]))
    return "".join(parts)


def to_telegram_markdown(text: str) -> str:
    """Render common markdown into Telegram's MarkdownV2 dialect.

    Fenced and inline code, **bold**, links and headings are kept as
    entities; everything else is escaped so it is shown literally.
    """
    rendered = []
    last = 0
    for match in _TOKEN.finditer(text):
        rendered.append(_render_plain(text[last:match.start()]))
        if match.group("block") is not None:
            lang = match.group("lang") or ""
            block = _CODE_CHARS.sub(r"\\\1", match.group("block"))
            if not block.endswith("\n"):
                block += "\n"
            rendered.append(f"```{lang}\n{block}```")
        elif match.group("code") is not None:
            code = _CODE_CHARS.sub(r"\\\1", match.group("code"))
            rendered.append(f"`{code}`")
        elif match.group("bold") is not None:
            rendered.append(f"*{escape_markdown(match.group('bold'))}*")
        else:
            label = escape_markdown(match.group("label"))
            url = _URL_CHARS.sub(r"\\\1", match.group("url"))
            rendered.append(f"[{label}]({url})")
        last = match.end()
    rendered.append(_render_plain(text[last:]))
    return "".join(rendered)
