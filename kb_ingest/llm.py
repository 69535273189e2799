"""Generation service adapter and best-effort JSON recovery for model output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Protocol

from langchain_core.messages import HumanMessage, SystemMessage

from .errors import MalformedResponseError
from .utils import shorten

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*")


class Generator(Protocol):
    """Black-box text generation: prompt in, text out. May raise with a status code."""

    def generate(self, system_prompt: str, user_prompt: str, max_output_tokens: int) -> str:
        ...


class LangChainGenerator:
    """
    Generator backed by any LangChain chat model.

    Args:
        chat_model: A LangChain ``BaseChatModel`` (e.g. ChatOllama, ChatOpenAI)
        max_tokens_kwarg: Invocation keyword carrying the output-token cap, or
            None when the cap is configured on the model itself
    """

    def __init__(self, chat_model, max_tokens_kwarg: Optional[str] = "max_tokens") -> None:
        self.chat_model = chat_model
        self.max_tokens_kwarg = max_tokens_kwarg

    def generate(self, system_prompt: str, user_prompt: str, max_output_tokens: int) -> str:
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        kwargs = {self.max_tokens_kwarg: max_output_tokens} if self.max_tokens_kwarg else {}
        result = self.chat_model.invoke(messages, **kwargs)
        return message_text(result)


def message_text(message: Any) -> str:
    """Text of a LangChain message (string or list-of-parts content) or a plain string."""
    if isinstance(message, str):
        return message
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


def _strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket, ignoring string contents."""
    out = []
    in_string = False
    escape = False
    length = len(text)
    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            continue
        if ch == ",":
            j = i + 1
            while j < length and text[j].isspace():
                j += 1
            if j < length and text[j] in "]}":
                continue
        out.append(ch)
    return "".join(out)


def clean_json(raw: str) -> str:
    """
    Recover a JSON document from untrusted model output.

    Code fences are removed, the outermost balanced ``[...]`` or ``{...}``
    is located with a string/escape-aware scan (prose before or after it is
    dropped) and trailing commas are removed.
    """
    text = _FENCE_RE.sub("", raw or "").strip()
    starts = [pos for pos in (text.find("["), text.find("{")) if pos != -1]
    if not starts:
        return text
    start = min(starts)
    open_char = text[start]
    close_char = "]" if open_char == "[" else "}"

    depth = 0
    end = -1
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if in_string:
            if ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                end = i
                break

    body = text[start : end + 1] if end != -1 else text[start:]
    return _strip_trailing_commas(body.strip())


def parse_json_payload(raw: str) -> Any:
    """
    Parse model output as JSON after cleaning.

    Raises:
        MalformedResponseError: If nothing parseable remains
    """
    cleaned = clean_json(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.debug("Unparseable response: %s", shorten(cleaned, 500))
        raise MalformedResponseError(
            f"Response is not valid JSON: {exc.msg} at position {exc.pos}"
        ) from exc
