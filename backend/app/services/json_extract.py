"""
Best-effort JSON extraction from model responses.

Each strategy is a pure function returning the parsed value or raising
``ParseError``. ``try_parse_json`` runs them in order and returns the first
hit; ``extract_json`` additionally wraps unparsable text as ``{"raw": text}``
so a malformed response never fails a step by itself.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from app.errors import ParseError

logger = logging.getLogger(__name__)


_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(str(e)) from e


def parse_raw(text: str) -> Any:
    return _loads(text)


def parse_fenced_block(text: str) -> Any:
    match = _FENCED_BLOCK.search(text)
    if not match or not match.group(1).strip():
        raise ParseError("no fenced code block")
    return _loads(match.group(1))


def parse_brace_span(text: str) -> Any:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ParseError("no brace-delimited span")
    return _loads(text[start:end + 1])


PARSE_STRATEGIES: list[Callable[[str], Any]] = [
    parse_raw,
    parse_fenced_block,
    parse_brace_span,
]


def parse_json(text: str) -> Any:
    """
    Return the first successful parse.

    Raises:
        ParseError: every strategy failed.
    """
    for strategy in PARSE_STRATEGIES:
        try:
            return strategy(text)
        except ParseError:
            continue
    raise ParseError("response is not JSON")


def try_parse_json(text: str) -> Optional[Any]:
    """Like ``parse_json`` but returns None if every strategy fails."""
    try:
        return parse_json(text)
    except ParseError:
        return None


def extract_json(text: str) -> Any:
    """Parse ``text`` as JSON, falling back to ``{"raw": text}``."""
    try:
        return parse_json(text)
    except ParseError:
        logger.warning("Model response was not valid JSON; wrapping it as raw text")
        return {"raw": text}
