"""Prompt-boundary recognition in interpreter output."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_PROMPT_REGEXP = r">>> |In \[[0-9]+\]: "


@dataclass(frozen=True)
class PromptBoundary:
    """Recognise the interpreter's ready prompt at the end of some output.

    ``match`` returns the offset where the boundary starts, so that
    ``output[:offset]`` is what the interpreter printed before it. The prompt
    need not start a line: output without a trailing newline runs into it.
    """

    regexp: str = DEFAULT_PROMPT_REGEXP
    _pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        pattern = re.compile(rf"\r?\n?(?:{self.regexp})[ \t]*\Z")
        object.__setattr__(self, "_pattern", pattern)

    def match(self, output: str) -> int | None:
        found = self._pattern.search(output)
        return found.start() if found else None

    def __call__(self, output: str) -> bool:
        return self.match(output) is not None
