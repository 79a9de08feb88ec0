"""
JSON truncation repair.

Provider output is often wrapped in fences or prose and, when generation is
cut off, ends in the middle of a structure. This module turns such text into
a parsed value without inventing content: it only closes syntax that is
already open or discards a trailing incomplete fragment.

Repair strategies run in a fixed order and the first one that parses wins:

1. record_boundary: cut after the last complete record of the outermost
   open collection of records, then close what is still open.
2. close_dangling_string: close an unterminated string value, drop a
   trailing separator and close what is still open.
3. last_complete_element: cut after the last complete scalar or element
   and close what is still open.
4. strip_incomplete_tail: strip a trailing partial string, number or key
   and close everything still open.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from blueprintforge.utils.logging import get_logger

from .exceptions import ParseError

logger = get_logger(__name__)

PREVIEW_LENGTH = 500

_OPEN_FENCE_RE = re.compile(r"\A```[a-zA-Z]*[ \t]*\r?\n?")
_TRAILING_KEY_RE = re.compile(r'"(?:[^"\\]|\\.)*"\s*:\s*$')
_CLOSERS = {"{": "}", "[": "]"}
_WHITESPACE = " \t\r\n"
_STRUCTURAL = "{}[],:\""


@dataclass
class RepairedDocument:
    """Parsed value plus what repair had to do to get it."""

    value: Any
    repaired: bool = False
    strategy: str = "direct"
    units_preserved: int = 0
    units_dropped: int = 0
    strategies_attempted: List[str] = field(default_factory=list)


@dataclass
class _Frame:
    char: str
    key: Optional[str] = None
    expect_key: bool = False
    pending_key: Optional[str] = None
    last_record_end: Optional[int] = None
    record_count: int = 0


@dataclass
class _Scan:
    """String-aware scan of (possibly truncated) JSON text."""

    stack: List[_Frame]
    in_string: bool
    string_start: Optional[int]
    string_is_key: bool
    value_ends: List[int]
    end: int

    @property
    def closers(self) -> str:
        return closers_for(self.stack)


def closers_for(stack: Iterable[_Frame]) -> str:
    """Closing delimiters for the open frames, innermost first."""
    return "".join(_CLOSERS[frame.char] for frame in reversed(list(stack)))


def _decode_key(raw: str) -> str:
    try:
        return json.loads(raw)
    except ValueError:
        return raw.strip('"')


def scan(text: str) -> _Scan:
    """
    Walk the text tracking nesting, string and escape state.

    Braces and brackets inside string values are not counted. Scanning
    stops at a mismatched closer, since nothing after it can be trusted.
    """
    stack: List[_Frame] = []
    value_ends: List[int] = []
    in_string = False
    escaped = False
    string_start: Optional[int] = None
    string_is_key = False
    token_start: Optional[int] = None
    end = len(text)

    def complete_value(position: int, is_record: bool) -> None:
        value_ends.append(position)
        if stack:
            parent = stack[-1]
            if parent.char == "[" and is_record:
                parent.last_record_end = position
                parent.record_count += 1

    def in_value_position() -> bool:
        return not stack or stack[-1].char == "[" or not stack[-1].expect_key

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
                if string_is_key:
                    stack[-1].pending_key = _decode_key(text[string_start : i + 1])
                else:
                    complete_value(i + 1, is_record=False)
            continue

        if token_start is not None and (ch in _WHITESPACE or ch in _STRUCTURAL):
            complete_value(i, is_record=False)
            token_start = None

        if ch == '"':
            in_string = True
            string_start = i
            string_is_key = bool(stack) and stack[-1].char == "{" and stack[-1].expect_key
        elif ch in "{[":
            key = None
            if stack and stack[-1].char == "{":
                key = stack[-1].pending_key
            stack.append(_Frame(char=ch, key=key, expect_key=ch == "{"))
        elif ch in "}]":
            if not stack or _CLOSERS[stack[-1].char] != ch:
                end = i
                break
            stack.pop()
            complete_value(i + 1, is_record=True)
            if not stack:
                end = i + 1
                break
        elif ch == ",":
            if stack and stack[-1].char == "{":
                stack[-1].expect_key = True
                stack[-1].pending_key = None
        elif ch == ":":
            if stack and stack[-1].char == "{":
                stack[-1].expect_key = False
        elif ch in _WHITESPACE:
            continue
        elif token_start is None and in_value_position():
            token_start = i

    return _Scan(
        stack=stack,
        in_string=in_string,
        string_start=string_start if in_string else None,
        string_is_key=string_is_key if in_string else False,
        value_ends=value_ends,
        end=end,
    )


def strip_fences(text: str) -> str:
    """
    Remove a fence that opens or closes the text.

    Fences elsewhere are left alone; they may sit inside a string value.
    """
    text = text.strip()
    if text.startswith("```"):
        text = _OPEN_FENCE_RE.sub("", text, count=1)
    if text.endswith("```"):
        text = text[:-3]
    return text


def extract_json_region(text: str) -> str:
    """
    Trim prose before the first `{`/`[` and after its matching close.

    Truncated text with no matching close is returned from the opener on.
    """
    starts = [pos for pos in (text.find("{"), text.find("[")) if pos != -1]
    if not starts:
        return text.strip()
    start = min(starts)
    body = text[start:]
    result = scan(body)
    if not result.stack and not result.in_string:
        return body[: result.end]
    return body.rstrip()


def clean_json_text(text: str) -> str:
    """Strip fences and surrounding prose; idempotent on clean JSON."""
    return extract_json_region(strip_fences(text.strip()))


def _count_units(value: Any) -> int:
    if isinstance(value, (dict, list)):
        return len(value)
    return 1


def _strip_trailing_separator(text: str) -> str:
    text = text.rstrip()
    while text and text[-1] in ",:":
        if text[-1] == ":":
            match = _TRAILING_KEY_RE.search(text)
            text = text[: match.start()] if match else text[:-1]
        else:
            text = text[:-1]
        text = text.rstrip()
    return text


@dataclass
class _Candidate:
    strategy: str
    text: str
    kept_length: int
    records_kept: Optional[int] = None


def _record_boundary_candidate(
    text: str, result: _Scan, record_collections: Optional[Iterable[str]]
) -> Optional[_Candidate]:
    allowed = set(record_collections) if record_collections else None
    # Outermost collection first: only whole records survive the cut
    for index, frame in enumerate(result.stack):
        if frame.char != "[" or frame.last_record_end is None:
            continue
        if allowed is not None and frame.key not in allowed:
            continue
        return _Candidate(
            strategy="record_boundary",
            text=text[: frame.last_record_end] + closers_for(result.stack[: index + 1]),
            kept_length=frame.last_record_end,
            records_kept=frame.record_count,
        )
    return None


def _dangling_string_candidate(text: str, result: _Scan) -> Optional[_Candidate]:
    if not result.in_string or result.string_is_key:
        return None
    body = text[: result.end]
    # A lone trailing backslash would escape the synthesized quote
    trailing = len(body) - len(body.rstrip("\\"))
    if trailing % 2:
        body = body[:-1]
    closed = _strip_trailing_separator(body + '"')
    return _Candidate(
        strategy="close_dangling_string",
        text=closed + result.closers,
        kept_length=len(body),
    )


def _last_element_candidate(text: str, result: _Scan) -> Optional[_Candidate]:
    if not result.value_ends:
        return None
    prefix = text[: result.value_ends[-1]]
    return _Candidate(
        strategy="last_complete_element",
        text=prefix + scan(prefix).closers,
        kept_length=len(prefix),
    )


def _strip_tail_candidate(text: str, result: _Scan) -> _Candidate:
    prefix = text[: result.end]
    if result.in_string:
        prefix = prefix[: result.string_start]
    prefix = prefix.rstrip()
    while prefix and prefix[-1] not in _STRUCTURAL and prefix[-1] not in _WHITESPACE:
        prefix = prefix[:-1]
    prefix = _strip_trailing_separator(prefix)
    return _Candidate(
        strategy="strip_incomplete_tail",
        text=prefix + scan(prefix).closers,
        kept_length=len(prefix),
    )


def repair_json(
    text: str,
    record_collections: Optional[Iterable[str]] = None,
    provider: Optional[str] = None,
) -> RepairedDocument:
    """
    Parse provider text as JSON, repairing truncation where safe.

    Args:
        text: Raw provider text
        record_collections: Keys of arrays whose elements count as records;
            any array of objects qualifies when omitted
        provider: Provider id for log and error context

    Returns:
        RepairedDocument

    Raises:
        ParseError: If no strategy produces parseable JSON
    """
    cleaned = clean_json_text(text)

    try:
        value = json.loads(cleaned)
        return RepairedDocument(
            value=value,
            repaired=False,
            strategy="direct",
            units_preserved=_count_units(value),
            strategies_attempted=["direct"],
        )
    except json.JSONDecodeError as e:
        last_error = e

    result = scan(cleaned)
    open_count = len(result.stack)

    logger.warning(
        f"Direct JSON parse failed at position {last_error.pos}, attempting repair",
        extra={
            "event": "repair.attempted",
            "provider": provider,
            "error_position": last_error.pos,
            "open_structures": open_count,
            "in_string": result.in_string,
            "text_length": len(cleaned),
        },
    )

    attempted = ["direct"]
    candidates = [
        _record_boundary_candidate(cleaned, result, record_collections),
        _dangling_string_candidate(cleaned, result),
        _last_element_candidate(cleaned, result),
        _strip_tail_candidate(cleaned, result),
    ]

    for candidate in candidates:
        if candidate is None:
            continue
        attempted.append(candidate.strategy)
        try:
            value = json.loads(candidate.text)
        except json.JSONDecodeError as e:
            last_error = e
            continue

        if candidate.records_kept is not None:
            preserved = candidate.records_kept
        else:
            preserved = _count_units(value)
        dropped = 1 if candidate.kept_length < len(cleaned.rstrip()) else 0

        logger.info(
            f"Repaired truncated JSON using {candidate.strategy}",
            extra={
                "event": "repair.succeeded",
                "provider": provider,
                "strategy": candidate.strategy,
                "units_preserved": preserved,
                "units_dropped": dropped,
                "original_length": len(cleaned),
                "repaired_length": len(candidate.text),
            },
        )
        return RepairedDocument(
            value=value,
            repaired=True,
            strategy=candidate.strategy,
            units_preserved=preserved,
            units_dropped=dropped,
            strategies_attempted=attempted,
        )

    logger.error(
        "JSON repair failed",
        extra={
            "event": "repair.failed",
            "provider": provider,
            "strategies": attempted,
            "error_position": last_error.pos,
            "preview": cleaned[:200],
        },
    )
    raise ParseError(
        f"Could not parse JSON after repair: {last_error.msg} at position {last_error.pos}",
        provider,
        preview=cleaned[:PREVIEW_LENGTH],
        position=last_error.pos,
        strategies=attempted,
        cause=last_error,
    )
