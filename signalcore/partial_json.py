# signalcore/partial_json.py
"""
Best-effort extraction of named fields from a JSON response that is still
arriving token by token.

Values come from a tolerant recursive-descent parse of whatever prefix has
arrived. Whether a field is finished is decided separately by a plain
character scan (depth + string/escape state) over the raw text, so the
``<field>Partial`` flags never depend on how far the parser got.
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from signalcore.errors import StreamParseError

log = logging.getLogger("partial_json")

STRING_FIELDS = ("tldr", "category", "summary")
ARRAY_FIELDS = ("keyInsights", "actionItems", "concepts", "entities", "suggestedTags")
FIELD_ALIASES = {"transcript": "summary"}
PARTIAL_SUFFIX = "Partial"

_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_ESCAPES = {'"': '"', "\\": "\\", "/": "/", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t"}
_WS = " \t\r\n"


def json_region(text: str) -> Optional[str]:
    """Text from the first ``{`` on, after dropping a leading code fence."""
    if not text:
        return None
    body = _FENCE_RE.sub("", text, count=1)
    start = body.find("{")
    if start < 0:
        return None
    return body[start:]


class _Stop(Exception):
    pass


class _TolerantParser:
    """Parses as much of a JSON prefix as has arrived.

    Every ``_value`` style method returns ``(value, complete)``. Containers
    keep only members that finished; an unfinished string keeps the text
    decoded so far; an unfinished number or literal comes back as ``None``.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _skip_ws(self) -> None:
        n = len(self.text)
        while self.pos < n and self.text[self.pos] in _WS:
            self.pos += 1

    def _peek(self) -> str:
        self._skip_ws()
        if self.pos >= len(self.text):
            raise _Stop()
        return self.text[self.pos]

    def top_level(self) -> Dict[str, Tuple[Any, bool]]:
        entries: Dict[str, Tuple[Any, bool]] = {}
        try:
            if self._peek() != "{":
                return entries
            self.pos += 1
            for key, value, done in self._members():
                if key not in entries and value is not None:
                    entries[key] = (value, done)
                if not done:
                    break
        except _Stop:
            pass
        return entries

    def _members(self):
        while True:
            ch = self._peek()
            if ch == "}":
                self.pos += 1
                return
            if ch == ",":
                self.pos += 1
                continue
            if ch != '"':
                raise _Stop()
            key, key_done = self._string()
            if not key_done or self._peek() != ":":
                raise _Stop()
            self.pos += 1
            value, done = self._value()
            yield key, value, done
            if not done:
                return

    def _value(self) -> Tuple[Any, bool]:
        ch = self._peek()
        if ch == '"':
            return self._string()
        if ch == "[":
            return self._array()
        if ch == "{":
            return self._object()
        if ch == "-" or ch.isdigit():
            return self._number()
        return self._literal()

    def _object(self) -> Tuple[Dict[str, Any], bool]:
        self.pos += 1
        out: Dict[str, Any] = {}
        try:
            for key, value, done in self._members():
                if not done:
                    return out, False
                out.setdefault(key, value)
        except _Stop:
            return out, False
        return out, True

    def _array(self) -> Tuple[List[Any], bool]:
        self.pos += 1
        items: List[Any] = []
        try:
            while True:
                ch = self._peek()
                if ch == "]":
                    self.pos += 1
                    return items, True
                if ch == ",":
                    self.pos += 1
                    continue
                value, done = self._value()
                if not done:
                    return items, False
                items.append(value)
        except _Stop:
            return items, False

    def _string(self) -> Tuple[str, bool]:
        text = self.text
        n = len(text)
        i = self.pos + 1
        buf: List[str] = []
        while i < n:
            ch = text[i]
            if ch == '"':
                self.pos = i + 1
                return "".join(buf), True
            if ch != "\\":
                buf.append(ch)
                i += 1
                continue
            if i + 1 >= n:
                break
            esc = text[i + 1]
            if esc != "u":
                buf.append(_ESCAPES.get(esc, esc))
                i += 2
                continue
            digits = text[i + 2:i + 6]
            if len(digits) < 4:
                break
            try:
                code = int(digits, 16)
            except ValueError:
                raise _Stop()
            if 0xD800 <= code <= 0xDBFF:
                tail = text[i + 6:i + 12]
                if len(tail) < 6 and ("\\u".startswith(tail) or tail.startswith("\\u")):
                    # low surrogate not here yet
                    break
                if tail.startswith("\\u"):
                    try:
                        low = int(tail[2:6], 16)
                    except ValueError:
                        low = -1
                    if 0xDC00 <= low <= 0xDFFF:
                        code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
                        i += 6
            buf.append(chr(code))
            i += 6
        self.pos = n
        return "".join(buf), False

    def _number(self) -> Tuple[Any, bool]:
        m = _NUMBER_RE.match(self.text, self.pos)
        if not m:
            raise _Stop()
        self.pos = m.end()
        if self.pos >= len(self.text):
            # more digits may follow
            return None, False
        raw = m.group(0)
        if any(c in raw for c in ".eE"):
            return float(raw), True
        return int(raw), True

    def _literal(self) -> Tuple[Any, bool]:
        rest = self.text[self.pos:self.pos + 5]
        for word, value in (("true", True), ("false", False), ("null", None)):
            if rest.startswith(word):
                self.pos += len(word)
                return value, True
            if word.startswith(rest):
                self.pos = len(self.text)
                return None, False
        raise _Stop()


def find_value_start(region: str, key: str) -> Optional[int]:
    """Offset of the value of the first top-level ``key`` in ``region``."""
    n = len(region)
    depth = 0
    in_string = False
    escaped = False
    string_start = 0
    i = 0
    while i < n:
        ch = region[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
                if depth == 1 and region[string_start + 1:i] == key:
                    j = i + 1
                    while j < n and region[j] in _WS:
                        j += 1
                    if j < n and region[j] == ":":
                        j += 1
                        while j < n and region[j] in _WS:
                            j += 1
                        return j if j < n else None
        elif ch == '"':
            in_string = True
            string_start = i
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
        i += 1
    return None


def value_closed(region: str, start: int) -> bool:
    """True once the string or array opening at ``start`` has been closed."""
    if start >= len(region):
        return False
    opener = region[start]
    escaped = False
    if opener == '"':
        for ch in region[start + 1:]:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                return True
        return False
    if opener != "[":
        return False
    depth = 0
    in_string = False
    for ch in region[start:]:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return True
    return False


def _field_complete(region: str, raw_key: str, parsed_done: bool) -> bool:
    if not parsed_done:
        return False
    start = find_value_start(region, raw_key)
    return start is not None and value_closed(region, start)


def extract_partial_sections(accumulated_text: str) -> Dict[str, Any]:
    """
    Map of recognized fields found in ``accumulated_text`` so far.

    Finished fields appear as ``sections[name]``; fields still growing also
    carry ``sections[name + "Partial"] = True``. Never raises.
    """
    sections: Dict[str, Any] = {}
    try:
        region = json_region(accumulated_text)
        if region is None:
            return sections
        entries = _TolerantParser(region).top_level()
        for raw_key, (value, done) in entries.items():
            name = FIELD_ALIASES.get(raw_key, raw_key)
            if name in sections:
                continue
            if name in STRING_FIELDS:
                if not isinstance(value, str):
                    continue
            elif name in ARRAY_FIELDS:
                if not isinstance(value, list):
                    continue
                value = [v for v in value if isinstance(v, str)]
            else:
                continue
            complete = _field_complete(region, raw_key, done)
            if not complete and not value:
                continue
            sections[name] = value
            if not complete:
                sections[name + PARTIAL_SUFFIX] = True
    except Exception as exc:
        log.debug("partial_parse_failed error=%s", exc)
        return {}
    return sections


def parse_json_object(text: str) -> Dict[str, Any]:
    """Strict parse of a finished response, tolerating prose or fences around it."""
    body = (text or "").strip()
    try:
        data = json.loads(body)
    except ValueError:
        m = _OBJECT_RE.search(body)
        if not m:
            raise StreamParseError("no JSON object in response")
        try:
            data = json.loads(m.group(0))
        except ValueError as exc:
            raise StreamParseError(f"unparseable JSON object: {exc}") from exc
    if not isinstance(data, dict):
        raise StreamParseError("response JSON is not an object")
    return data


@dataclass
class StreamParseState:
    accumulated_text: str = ""
    sections: Dict[str, Any] = field(default_factory=dict)
    partial_flags: Dict[str, bool] = field(default_factory=dict)

    def feed(self, chunk: str) -> Dict[str, Any]:
        if chunk:
            self.accumulated_text += chunk
        fresh = extract_partial_sections(self.accumulated_text)
        if fresh or not self.sections:
            self.sections = fresh
            self.partial_flags = {
                k: bool(fresh.get(k + PARTIAL_SUFFIX))
                for k in fresh
                if not k.endswith(PARTIAL_SUFFIX)
            }
        return self.sections

    def finish(self) -> Dict[str, Any]:
        return parse_json_object(self.accumulated_text)


def stream_sections(
    chunks: Iterable[str],
    on_sections: Optional[Callable[[Dict[str, Any]], None]] = None,
    *,
    min_interval: float = 0.0,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, Any]:
    """
    Feed ``chunks`` through a StreamParseState and return the final object.

    ``on_sections`` sees changed sections at most once per ``min_interval``
    seconds, plus once after the last chunk. Errors from ``chunks`` propagate.
    """
    state = StreamParseState()
    last_emit: Optional[float] = None
    last_key: Optional[str] = None
    for chunk in chunks:
        sections = state.feed(chunk)
        if on_sections is None:
            continue
        now = clock()
        if last_emit is not None and now - last_emit < min_interval:
            continue
        key = json.dumps(sections, sort_keys=True)
        if key == last_key:
            continue
        last_emit = now
        last_key = key
        on_sections(dict(sections))
    if on_sections is not None:
        on_sections(dict(state.sections))
    log.info("stream_done chars=%d fields=%d", len(state.accumulated_text), len(state.partial_flags))
    return state.finish()
