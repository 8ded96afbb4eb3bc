"""Text transformations applied before sending and before echoing."""

from __future__ import annotations

import re
from pathlib import Path

from pyrelay.errors import MalformedBlockError
from pyrelay.lines import TAB_WIDTH, classify, indentation

ELLIPSIS_MARKER = "..."
REGION_GUARD = "if True:\n"

FILE_BOOTSTRAP_TEMPLATE = (
    "import sys, codecs, os, ast;"
    "__pyfile = codecs.open('''{path}''', encoding='''{encoding}''');"
    "__code = __pyfile.read().encode('''{encoding}''');"
    "__pyfile.close();"
    "{remove}"
    "__block = ast.parse(__code, '''{path}''', mode='exec');"
    "{main_filter}"
    "__last = __block.body[-1] if len(__block.body) > 0 else None;"
    "__isexpr = isinstance(__last, ast.Expr);"
    "_ = __block.body.pop() if __isexpr else None;"
    "exec(compile(__block, '''{path}''', mode='exec'));"
    "eval(compile(ast.Expression(__last.value), '''{path}''', mode='eval')) if __isexpr else None"
)
MAIN_GUARD_FILTER = (
    "__block.body = [__node for __node in __block.body if not (isinstance(__node, ast.If) and "
    "ast.unparse(__node.test).replace('\"', \"'\") == \"__name__ == '__main__'\")];"
)

_STRIP_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^import (?:sys, )?codecs, os(?:, ast)?;__pyfile = codecs\.open.*$", re.MULTILINE), ""),
    (re.compile(r"^exec\(compile\(.*$", re.MULTILINE), ""),
    (re.compile(r"\A# -\*- coding: [-\w.]+ -\*-\n?"), ""),
    (re.compile(r"\Aif True:\n"), ""),
    (re.compile(r"\A(?:[ \t]*\n)+"), ""),
)


def dedent(text: str) -> str:
    """Shift ``text`` left by the indentation of its first code line.

    Blank and comment lines do not count. A later code line indented less
    than the first one makes the fragment inconsistent.
    """

    lines = text.split("\n")
    code = [(index, indentation(line)) for index, line in enumerate(lines) if classify(line).is_code]
    if not code:
        return text
    shift = code[0][1]
    for index, column in code[1:]:
        if column < shift:
            raise MalformedBlockError(
                f"Can't send the region: line {index + 1} is indented less than its first line"
            )
    if shift == 0:
        return text
    return "\n".join(_shift_left(line, shift) for line in lines)


def indent(text: str, columns: int) -> str:
    prefix = " " * columns
    return "\n".join(prefix + line if line else line for line in text.split("\n"))


def _shift_left(line: str, shift: int) -> str:
    body = line.lstrip(" \t")
    leading = line[: len(line) - len(body)].expandtabs(TAB_WIDTH)
    return leading[shift:] + body


def strip_bootstrap(text: str) -> str:
    """Remove sending artifacts from a copy of the text shown in the transcript."""

    while True:
        stripped = text
        for pattern, replacement in _STRIP_PATTERNS:
            stripped = pattern.sub(replacement, stripped)
        if stripped == text:
            return stripped
        text = stripped


def truncate_for_display(text: str, head_lines: int, tail_lines: int) -> str:
    lines = text.splitlines()
    if head_lines + tail_lines <= 0 or len(lines) <= head_lines + tail_lines:
        return text
    kept = lines[:head_lines] + [ELLIPSIS_MARKER]
    if tail_lines > 0:
        kept += lines[-tail_lines:]
    return "\n".join(kept)


def prepare_echo(text: str, head_lines: int, tail_lines: int) -> str:
    """The transcript copy of a transmitted text."""

    return truncate_for_display(dedent(strip_bootstrap(text)), head_lines, tail_lines)


def wrap_region(text: str) -> str:
    """Guard a region whose first code line is indented."""

    for line in text.split("\n"):
        if classify(line).is_code:
            return REGION_GUARD + text if indentation(line) > 0 else text
    return text


def with_coding_cookie(text: str, encoding: str) -> str:
    return f"# -*- coding: {encoding} -*-\n{text}"


def file_bootstrap_command(
    path: str | Path,
    encoding: str = "utf-8",
    *,
    send_main: bool = False,
    delete: bool = False,
) -> str:
    """One-line command making the interpreter load and run ``path``.

    The last top-level unit is evaluated separately when it is a bare
    expression so its value is displayed.
    """

    location = path.as_posix() if isinstance(path, Path) else path
    return FILE_BOOTSTRAP_TEMPLATE.format(
        path=location,
        encoding=encoding,
        remove=f"os.remove('''{location}''');" if delete else "",
        main_filter="" if send_main else MAIN_GUARD_FILTER,
    )
