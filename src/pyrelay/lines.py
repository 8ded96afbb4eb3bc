"""Single-line classification."""

from __future__ import annotations

import re
from enum import Enum

TAB_WIDTH = 8

BLANK_RE = re.compile(r"^\s*$")
COMMENT_RE = re.compile(r"^\s*#")
DECORATOR_RE = re.compile(r"^\s*@")
DEF_HEADER_RE = re.compile(r"^\s*(?:async\s+)?def\s+\w")
CLASS_HEADER_RE = re.compile(r"^\s*class\s+\w")
ELSE_ELIF_RE = re.compile(r"^\s*(?:else\s*:|elif\b|except\b|finally\s*:)")


class LineKind(Enum):
    BLANK = "blank"
    COMMENT = "comment"
    DECORATOR = "decorator"
    DEF_HEADER = "def"
    CLASS_HEADER = "class"
    ELSE_ELIF = "else-elif"
    CODE = "code"

    @property
    def is_code(self) -> bool:
        return self not in (LineKind.BLANK, LineKind.COMMENT)

    @property
    def is_header(self) -> bool:
        return self in (LineKind.DEF_HEADER, LineKind.CLASS_HEADER)


def classify(line: str) -> LineKind:
    """Return the kind of one source line."""

    if DECORATOR_RE.match(line):
        return LineKind.DECORATOR
    if DEF_HEADER_RE.match(line):
        return LineKind.DEF_HEADER
    if CLASS_HEADER_RE.match(line):
        return LineKind.CLASS_HEADER
    if ELSE_ELIF_RE.match(line):
        return LineKind.ELSE_ELIF
    if BLANK_RE.match(line):
        return LineKind.BLANK
    if COMMENT_RE.match(line):
        return LineKind.COMMENT
    return LineKind.CODE


def indentation(line: str) -> int:
    """Column of the first non-whitespace character, tabs expanded."""

    column = 0
    for char in line:
        if char == " ":
            column += 1
        elif char == "\t":
            column = (column // TAB_WIDTH + 1) * TAB_WIDTH
        else:
            break
    return column
