"""MarkdownV2 helpers for Telegram messages."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List


_MARKDOWN_V2_SPECIAL = re.compile(r"([\\_*\[\]()~`>#+=|{}.!\-])")
_MARKDOWN_V2_ESCAPED = re.compile(r"\\([\\_*\[\]()~`>#+=|{}.!\-])")


def escape_markdown(value: Any) -> str:
    """Escape a value for interpolation into a MarkdownV2 message."""

    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", str(value))


def unescape_markdown(value: str) -> str:
    """Drop MarkdownV2 escapes so the text reads correctly without a parse mode."""

    return _MARKDOWN_V2_ESCAPED.sub(r"\1", value)


def inline_keyboard(rows: Iterable[Iterable[tuple[str, str]]]) -> Dict[str, Any]:
    keyboard: List[List[Dict[str, str]]] = []
    for row in rows:
        keyboard.append([{"text": text, "callback_data": data} for text, data in row])
    return {"inline_keyboard": keyboard}


def empty_keyboard() -> Dict[str, Any]:
    return {"inline_keyboard": []}
