"""Source buffers and their per-line lexical index."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, replace
from functools import cached_property
from pathlib import Path

from pyrelay.lines import LineKind, classify, indentation

OPEN_BRACKETS = "([{"
CLOSE_BRACKETS = ")]}"


@dataclass(frozen=True)
class SourceBuffer:
    """Text of one source plus a cursor offset.

    ``name`` is the source identity used for dedicated session targets.
    """

    text: str
    point: int = 0
    name: str = "<buffer>"
    path: Path | None = None
    encoding: str = "utf-8"

    @classmethod
    def from_file(cls, path: Path, *, line: int = 1, encoding: str = "utf-8") -> SourceBuffer:
        text = path.read_text(encoding=encoding)
        buffer = cls(text=text, name=path.name, path=path, encoding=encoding)
        return buffer.at_line(line)

    @cached_property
    def lines(self) -> SourceLines:
        return SourceLines(self.text)

    def at(self, point: int) -> SourceBuffer:
        return replace(self, point=max(0, min(point, len(self.text))))

    def at_line(self, lineno: int) -> SourceBuffer:
        """Move the cursor to the start of a 1-based line number."""
        index = max(0, min(lineno - 1, self.lines.count - 1))
        return self.at(self.lines.line_start(index))

    @property
    def current_line(self) -> int:
        return self.lines.line_index(self.point) + 1

    def substring(self, start: int, end: int) -> str:
        return self.text[start:end]


class SourceLines:
    """Line table of a text with kinds, indentation and continuation flags.

    A line *continues* the previous one when it starts inside an open
    bracket, inside a multi-line string, or after a trailing backslash.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.lines = text.split("\n")
        self.starts: list[int] = []
        offset = 0
        for line in self.lines:
            self.starts.append(offset)
            offset += len(line) + 1
        self.kinds = [classify(line) for line in self.lines]
        self.indents = [indentation(line) for line in self.lines]
        self.continues = _scan_continuations(self.lines)

    @property
    def count(self) -> int:
        return len(self.lines)

    def line_start(self, index: int) -> int:
        return self.starts[index]

    def line_end(self, index: int) -> int:
        return self.starts[index] + len(self.lines[index])

    def line_index(self, offset: int) -> int:
        return max(0, bisect_right(self.starts, offset) - 1)

    def kind(self, index: int) -> LineKind:
        return self.kinds[index]

    def indent(self, index: int) -> int:
        return self.indents[index]

    def is_blank(self, index: int) -> bool:
        return self.kinds[index] is LineKind.BLANK and not self.continues[index]

    def is_code(self, index: int) -> bool:
        return self.continues[index] or self.kinds[index].is_code

    def is_statement_start(self, index: int) -> bool:
        return not self.continues[index] and self.kinds[index].is_code

    def statement_start(self, index: int) -> int:
        while index > 0 and self.continues[index]:
            index -= 1
        return index

    def statement_end(self, index: int) -> int:
        while index + 1 < self.count and self.continues[index + 1]:
            index += 1
        return index

    def next_code_line(self, index: int) -> int | None:
        for candidate in range(index, self.count):
            if self.is_code(candidate):
                return candidate
        return None

    def previous_code_line(self, index: int) -> int | None:
        for candidate in range(index, -1, -1):
            if self.is_code(candidate):
                return candidate
        return None


def _scan_continuations(lines: list[str]) -> list[bool]:
    continues: list[bool] = []
    depth = 0
    quote: str | None = None
    backslash = False
    for line in lines:
        continues.append(depth > 0 or quote is not None or backslash)
        backslash = False
        content = line.rstrip("\r")
        size = len(content)
        index = 0
        while index < size:
            char = content[index]
            if quote is not None:
                if char == "\\":
                    index += 2
                elif content.startswith(quote, index):
                    index += len(quote)
                    quote = None
                else:
                    index += 1
                continue
            if char == "#":
                break
            if char in "'\"":
                triple = char * 3
                quote = triple if content.startswith(triple, index) else char
                index += len(quote)
                continue
            if char in OPEN_BRACKETS:
                depth += 1
            elif char in CLOSE_BRACKETS:
                depth = max(depth - 1, 0)
            elif char == "\\" and index == size - 1:
                backslash = True
            index += 1
        # An unterminated one-quote string ends with its line.
        if quote is not None and len(quote) == 1 and not content.endswith("\\"):
            quote = None
    return continues
