"""Centralized JSON serialization utilities.

A compact serializer for stream frames and jsonb columns, plus an
incremental parser for model output that streams a JSON array of objects.
"""

from __future__ import annotations

import json

from collections.abc import Callable
from functools import partial
from typing import Any

# Compact JSON (no spaces) with str fallback. Used for stream frames and tool payloads.
# Example: json_compact({"key": "value"}) -> '{"key":"value"}'
json_compact: Callable[..., str] = partial(json.dumps, separators=(",", ":"), default=str, ensure_ascii=False)


def parse_json_arguments(raw: str | None) -> dict[str, Any] | str:
    """Decode tool-call arguments; the raw string is returned when it is not a JSON object."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    return value if isinstance(value, dict) else raw


class JsonArrayStreamParser:
    """Extract complete objects from a JSON array that arrives in fragments.

    The array is located by its key (``{"elements": [ {...}, {...} ]}``); every
    time an element object closes it is decoded and returned from ``feed``.
    Elements that fail to decode are skipped.

    Example:
        parser = JsonArrayStreamParser("elements")
        parser.feed('{"elements": [{"a": 1}, {"a"')   # -> [{"a": 1}]
        parser.feed(': 2}]}')                         # -> [{"a": 2}]
    """

    def __init__(self, key: str = "elements") -> None:
        self._marker = f'"{key}"'
        self._buffer = ""
        self._pos = 0
        self._in_array = False
        self._done = False
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._element_start: int | None = None

    @property
    def done(self) -> bool:
        """True once the array's closing bracket has been seen."""
        return self._done

    def feed(self, fragment: str) -> list[Any]:
        self._buffer += fragment
        elements: list[Any] = []
        if self._done:
            return elements

        if not self._in_array and not self._find_array_start():
            return elements

        buffer = self._buffer
        i = self._pos
        while i < len(buffer):
            char = buffer[i]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif char == "\\":
                    self._escaped = True
                elif char == '"':
                    self._in_string = False
            elif char == '"':
                self._in_string = True
            elif char in "{[":
                if self._depth == 0 and char == "{":
                    self._element_start = i
                self._depth += 1
            elif char in "}]":
                if self._depth == 0 and char == "]":
                    self._done = True
                    i += 1
                    break
                self._depth -= 1
                if self._depth == 0 and self._element_start is not None:
                    raw = buffer[self._element_start : i + 1]
                    self._element_start = None
                    try:
                        elements.append(json.loads(raw))
                    except json.JSONDecodeError:
                        pass
            i += 1

        self._pos = i
        # Drop consumed text unless an element is still open
        if self._element_start is None:
            self._buffer = self._buffer[self._pos :]
            self._pos = 0
        return elements

    def _find_array_start(self) -> bool:
        marker_at = self._buffer.find(self._marker)
        if marker_at == -1:
            return False
        bracket_at = self._buffer.find("[", marker_at + len(self._marker))
        if bracket_at == -1:
            return False
        self._in_array = True
        self._pos = bracket_at + 1
        return True
