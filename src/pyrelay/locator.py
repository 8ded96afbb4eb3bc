"""Indentation-driven location of statements, definitions, groups and cells.

Nothing here builds a syntax tree. Boundaries come from the line table of
:class:`~pyrelay.source.SourceLines`: line kinds, indentation, and whether a
line continues the previous one.

The scan is heuristic. A statement whose continuation lines sit *left* of
its own first line, outside any bracket or string, is mis-scoped; callers
rely on that behaviour staying as it is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from pyrelay.errors import NavigationError, NoActiveBlockError
from pyrelay.lines import LineKind
from pyrelay.source import SourceBuffer, SourceLines

DEFAULT_CELL_BOUNDARY_REGEXP = r"^(?:##.*|#\s*<.+>|#\s*(?:In|Out)\[.*\]:|#\s*%%.*)\s*$"
DEFAULT_CODECELL_BEGINNING_REGEXP = r"^(?:##.*|#\s*<codecell>|#\s*In\[.*\]:|#\s*%%.*)\s*$"


class BlockKind(StrEnum):
    STATEMENT = "statement"
    TOP_STATEMENT = "top-statement"
    DEFUN = "defun"
    DEFCLASS = "defclass"
    GROUP = "group"
    CELL = "cell"
    REGION = "region"
    BUFFER = "buffer"


@dataclass(frozen=True)
class Block:
    """A located unit.

    ``start``/``end`` is a half-open offset range ending at the end of the
    last line (newline excluded). Line numbers are 1-based and inclusive.
    """

    kind: BlockKind
    start: int
    end: int
    first_line: int
    last_line: int

    def text(self, buffer: SourceBuffer) -> str:
        return buffer.substring(self.start, self.end)

    @property
    def is_empty(self) -> bool:
        return self.start == self.end


class BlockLocator:
    """Locate units of one buffer around a cursor offset."""

    def __init__(
        self,
        buffer: SourceBuffer,
        *,
        cell_boundary: str | re.Pattern[str] = DEFAULT_CELL_BOUNDARY_REGEXP,
        codecell_beginning: str | re.Pattern[str] = DEFAULT_CODECELL_BEGINNING_REGEXP,
    ) -> None:
        self.buffer = buffer
        self._lines: SourceLines = buffer.lines
        self._cell_boundary = re.compile(cell_boundary)
        self._codecell_beginning = re.compile(codecell_beginning)

    def statement(self, pos: int | None = None) -> Block:
        index = self._code_line_from(pos)
        start = self._resolve_statement_start(index)
        return self._block(BlockKind.STATEMENT, start, self._statement_end(start))

    def top_statement(self, pos: int | None = None) -> Block:
        index = self._code_line_from(pos)
        start, end = self._top_statement_bounds(index)
        return self._block(BlockKind.TOP_STATEMENT, start, end)

    def defun(self, pos: int | None = None) -> Block | None:
        return self.definition(pos, LineKind.DEF_HEADER)

    def defclass(self, pos: int | None = None) -> Block | None:
        return self.definition(pos, LineKind.CLASS_HEADER)

    def definition(self, pos: int | None, header: LineKind) -> Block | None:
        """Find the definition with a ``header`` line enclosing ``pos``.

        Returns ``None`` when no header qualifies; the cursor is untouched
        either way since locating never moves it.
        """

        kind = BlockKind.DEFCLASS if header is LineKind.CLASS_HEADER else BlockKind.DEFUN
        index = self._line_at(pos)
        found = self._header_on_line(index, header)
        if found is None:
            found = self._enclosing_header(pos, index, header)
        if found is None:
            return None
        start = self._decorator_above(found)
        end = self._block_end(found)
        return self._block(kind, found if start is None else start, end)

    def group(self, pos: int | None = None) -> Block:
        lines = self._lines
        start, end = self._top_statement_bounds(self._code_line_from(pos))

        while end + 1 < lines.count and not lines.is_blank(end + 1):
            following = lines.next_code_line(end + 1)
            if following is None or self._has_blank(end + 1, following):
                break
            end = self._top_statement_bounds(following)[1]

        while start > 0 and not lines.is_blank(start - 1):
            preceding = lines.previous_code_line(start - 1)
            if preceding is None or self._has_blank(preceding + 1, start):
                break
            start = self._top_statement_bounds(preceding)[0]

        return self._block(BlockKind.GROUP, start, end)

    def cell(self, pos: int | None = None) -> Block:
        lines = self._lines
        index = self._line_at(pos)
        boundary = None
        for candidate in range(index, -1, -1):
            if self._cell_boundary.match(lines.lines[candidate]):
                boundary = candidate
                break
        if boundary is None or not self._codecell_beginning.match(lines.lines[boundary]):
            raise NoActiveBlockError("Not in a codecell")

        first = boundary + 1
        last = lines.count - 1
        for candidate in range(first, lines.count):
            if self._cell_boundary.match(lines.lines[candidate]):
                last = candidate - 1
                break
        else:
            while last >= first and lines.is_blank(last):
                last -= 1

        if last < first:
            offset = lines.line_start(first) if first < lines.count else len(lines.text)
            return Block(BlockKind.CELL, offset, offset, first + 1, first)
        return self._block(BlockKind.CELL, first, last)

    def region(self, start: int, end: int) -> Block:
        """Expand an offset range to the full lines it touches."""

        lines = self._lines
        first = self._line_at(min(start, end))
        last = self._line_at(max(start, end))
        if last > first and max(start, end) == lines.line_start(last):
            last -= 1
        return self._block(BlockKind.REGION, first, last)

    def whole(self) -> Block:
        return self._block(BlockKind.BUFFER, 0, self._lines.count - 1)

    def next_statement_start(self, block: Block) -> int:
        """Offset of the first code line after ``block``, or the buffer end."""

        following = self._lines.next_code_line(block.last_line)
        if following is None:
            return len(self._lines.text)
        return self._lines.line_start(following)

    def _line_at(self, pos: int | None) -> int:
        return self._lines.line_index(self.buffer.point if pos is None else pos)

    def _code_line_from(self, pos: int | None) -> int:
        index = self._lines.next_code_line(self._line_at(pos))
        if index is None:
            raise NoActiveBlockError("No statement at or after point")
        return index

    def _has_blank(self, first: int, stop: int) -> bool:
        return any(self._lines.is_blank(index) for index in range(first, stop))

    def _previous_statement(self, index: int) -> int | None:
        previous = self._lines.previous_code_line(index - 1) if index > 0 else None
        if previous is None:
            return None
        return self._lines.statement_start(previous)

    def _block_end(self, start: int) -> int:
        """Last line of the statement at ``start`` and everything nested in it."""

        lines = self._lines
        base = lines.indent(start)
        end = lines.statement_end(start)
        index = end + 1
        while index < lines.count:
            if not lines.is_statement_start(index):
                index += 1
                continue
            if lines.indent(index) <= base:
                break
            end = lines.statement_end(index)
            index = end + 1
        return end

    def _next_sibling(self, start: int) -> int | None:
        lines = self._lines
        for index in range(self._block_end(start) + 1, lines.count):
            if lines.is_statement_start(index):
                return index if lines.indent(index) == lines.indent(start) else None
        return None

    def _previous_sibling(self, start: int) -> int | None:
        lines = self._lines
        base = lines.indent(start)
        for index in range(start - 1, -1, -1):
            if not lines.is_statement_start(index):
                continue
            if lines.indent(index) < base:
                return None
            if lines.indent(index) == base:
                return index
        return None

    def _decorator_above(self, start: int) -> int | None:
        """Topmost decorator stacked directly above ``start``."""

        lines = self._lines
        found = None
        index = start
        while True:
            previous = self._previous_statement(index)
            if previous is None or lines.kind(previous) is not LineKind.DECORATOR:
                return found
            if lines.indent(previous) != lines.indent(start):
                return found
            found = index = previous

    def _resolve_statement_start(self, index: int) -> int:
        lines = self._lines
        start = lines.statement_start(index)
        for _ in range(lines.count + 1):
            kind = lines.kind(start)
            if kind is LineKind.ELSE_ELIF:
                previous = self._previous_sibling(start)
                if previous is None:
                    raise NavigationError(f"Cannot find the statement opened before line {start + 1}")
            elif kind.is_header:
                previous = self._decorator_above(start)
                if previous is None:
                    return start
            else:
                return start
            if previous >= start:
                raise NavigationError(f"Statement start does not move at line {start + 1}")
            start = previous
        raise NavigationError(f"Statement start never stabilized near line {index + 1}")

    def _statement_end(self, start: int) -> int:
        lines = self._lines
        current = start
        for _ in range(lines.count + 1):
            sibling = self._next_sibling(current)
            if sibling is not None and (
                lines.kind(sibling) is LineKind.ELSE_ELIF or lines.kind(current) is LineKind.DECORATOR
            ):
                current = sibling
                continue
            return self._block_end(current)
        raise NavigationError(f"Statement starting at line {start + 1} never closes")

    def _top_statement_bounds(self, index: int) -> tuple[int, int]:
        lines = self._lines
        start = self._resolve_statement_start(index)
        while lines.indent(start) != 0:
            previous = lines.previous_code_line(start - 1) if start > 0 else None
            if previous is None:
                raise NavigationError(f"Line {start + 1} is indented but no statement encloses it")
            start = self._resolve_statement_start(previous)
        return start, self._statement_end(start)

    def _header_on_line(self, index: int, header: LineKind) -> int | None:
        lines = self._lines
        if lines.continues[index]:
            return None
        if lines.kind(index) is header:
            return index
        # On a decorator, follow the stack down to what it decorates.
        while lines.kind(index) is LineKind.DECORATOR:
            following = lines.next_code_line(lines.statement_end(index) + 1)
            if following is None or lines.indent(following) != lines.indent(index):
                return None
            index = following
        return index if lines.kind(index) is header else None

    def _enclosing_header(self, pos: int | None, index: int, header: LineKind) -> int | None:
        lines = self._lines
        try:
            floor = self._top_statement_bounds(self._code_line_from(pos))[0]
        except NoActiveBlockError:
            return None
        minimum: int | None = None
        for candidate in range(index, floor - 1, -1):
            if not lines.is_statement_start(candidate):
                continue
            indent = lines.indent(candidate)
            if lines.kind(candidate) is header and (minimum is None or indent < minimum):
                return candidate
            minimum = indent if minimum is None else min(minimum, indent)
        return None

    def _block(self, kind: BlockKind, first: int, last: int) -> Block:
        lines = self._lines
        return Block(
            kind=kind,
            start=lines.line_start(first),
            end=lines.line_end(last),
            first_line=first + 1,
            last_line=last + 1,
        )
