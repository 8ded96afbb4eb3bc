import pytest

from pyrelay.errors import NavigationError, NoActiveBlockError
from pyrelay.lines import LineKind
from pyrelay.locator import BlockKind, BlockLocator
from pyrelay.source import SourceBuffer

CONDITIONAL = """\
if ready:
    value = 1
elif waiting:
    value = 2
else:
    value = 3
after = 1"""

DECORATED = """\
import os


@decorator
@other(1)
def handler():
    return 1"""

METHODS = """\
class Service:
    def start(self):
        count = 1
        return count

    def stop(self):
        pass"""

GROUPS = """\
import os
import sys

def first():
    return 1
def second():
    return 2

x = 3"""


def _locate(text: str, line: int) -> tuple[SourceBuffer, BlockLocator]:
    buffer = SourceBuffer(text=text).at_line(line)
    return buffer, BlockLocator(buffer)


def _span(block) -> tuple[int, int]:
    return block.first_line, block.last_line


def test_single_line_statement_spans_exactly_its_line() -> None:
    text = "a = 1\nb = 2\nc = 3"
    buffer, locator = _locate(text, 2)
    for pos in range(buffer.point, buffer.point + len("b = 2") + 1):
        block = locator.statement(pos)
        assert _span(block) == (2, 2)
        assert block.text(buffer) == "b = 2"


def test_statement_includes_continuation_lines() -> None:
    buffer, locator = _locate("x = 1\ny = call(1,\n         2)\nz = 3", 3)
    block = locator.statement()
    assert block.kind is BlockKind.STATEMENT
    assert _span(block) == (2, 3)
    assert block.text(buffer) == "y = call(1,\n         2)"


def test_statement_skips_forward_from_blank_and_comment_lines() -> None:
    _, locator = _locate("x = 1\n\n# note\ny = 2", 2)
    assert _span(locator.statement()) == (4, 4)


def test_statement_after_last_code_line_is_not_active() -> None:
    _, locator = _locate("x = 1\n\n", 3)
    with pytest.raises(NoActiveBlockError):
        locator.statement()


@pytest.mark.parametrize("line", [1, 3, 5])
def test_else_and_elif_extend_to_the_whole_conditional(line: int) -> None:
    _, locator = _locate(CONDITIONAL, line)
    assert _span(locator.statement()) == (1, 6)


def test_statement_inside_a_branch_stays_nested() -> None:
    buffer, locator = _locate(CONDITIONAL, 2)
    block = locator.statement()
    assert _span(block) == (2, 2)
    assert block.text(buffer) == "    value = 1"


def test_try_except_finally_is_one_statement() -> None:
    text = "try:\n    run()\nexcept OSError:\n    pass\nfinally:\n    close()\ndone = 1"
    _, locator = _locate(text, 5)
    assert _span(locator.statement()) == (1, 6)


def test_orphan_else_is_a_navigation_error() -> None:
    _, locator = _locate("else:\n    pass", 1)
    with pytest.raises(NavigationError):
        locator.statement()


@pytest.mark.parametrize("line", [4, 6])
def test_decorators_belong_to_their_definition(line: int) -> None:
    _, locator = _locate(DECORATED, line)
    assert _span(locator.statement()) == (4, 7)


def test_top_statement_never_starts_indented() -> None:
    buffer, locator = _locate(METHODS, 3)
    block = locator.top_statement()
    assert block.kind is BlockKind.TOP_STATEMENT
    assert _span(block) == (1, 7)
    assert not block.text(buffer)[0].isspace()


def test_top_statement_on_a_top_level_line() -> None:
    _, locator = _locate(CONDITIONAL, 7)
    assert _span(locator.top_statement()) == (7, 7)


def test_defun_from_inside_the_body() -> None:
    buffer, locator = _locate(METHODS, 3)
    block = locator.defun()
    assert block is not None
    assert block.kind is BlockKind.DEFUN
    assert _span(block) == (2, 4)
    assert block.text(buffer).startswith("    def start(self):")


def test_defun_on_the_header_line() -> None:
    _, locator = _locate(METHODS, 6)
    block = locator.defun()
    assert block is not None
    assert _span(block) == (6, 7)


def test_defun_includes_decorators() -> None:
    _, locator = _locate(DECORATED, 7)
    block = locator.defun()
    assert block is not None
    assert _span(block) == (4, 7)


def test_defun_from_a_decorator_line() -> None:
    _, locator = _locate(DECORATED, 4)
    block = locator.defun()
    assert block is not None
    assert _span(block) == (4, 7)


def test_defclass_encloses_methods() -> None:
    _, locator = _locate(METHODS, 3)
    block = locator.defclass()
    assert block is not None
    assert block.kind is BlockKind.DEFCLASS
    assert _span(block) == (1, 7)


def test_sibling_definition_does_not_qualify() -> None:
    text = "def first():\n    return 1\nvalue = first()"
    _, locator = _locate(text, 3)
    assert locator.defun() is None


def test_definition_with_closing_bracket_at_header_indentation() -> None:
    text = "def build(\n    a,\n    b,\n):\n    return a"
    _, locator = _locate(text, 5)
    block = locator.definition(None, LineKind.DEF_HEADER)
    assert block is not None
    assert _span(block) == (1, 5)


def test_missing_definition_leaves_cursor_alone() -> None:
    buffer, locator = _locate("x = 1\ny = 2", 2)
    assert locator.defclass() is None
    assert locator.buffer.point == buffer.point


def test_group_stops_at_blank_lines() -> None:
    buffer, locator = _locate(GROUPS, 5)
    block = locator.group()
    assert block.kind is BlockKind.GROUP
    assert _span(block) == (4, 7)
    assert "\n\n" not in block.text(buffer)


def test_group_extends_backwards() -> None:
    _, locator = _locate(GROUPS, 2)
    assert _span(locator.group()) == (1, 2)


def test_group_keeps_blank_lines_inside_a_statement() -> None:
    text = "items = [\n\n    1,\n]\nsize = len(items)\n\nother = 1"
    _, locator = _locate(text, 1)
    assert _span(locator.group()) == (1, 5)


CELLS = """\
import os

# %% setup
a = 1
b = 2

c = 3
d = 4
e = 5
# %% next
f = 6"""


def test_cell_between_boundaries() -> None:
    buffer, locator = _locate(CELLS, 5)
    block = locator.cell()
    assert block.kind is BlockKind.CELL
    assert _span(block) == (4, 9)
    assert block.text(buffer).startswith("a = 1")


def test_cell_needs_a_codecell_beginning() -> None:
    _, locator = _locate(CELLS.replace("# %% setup", "# <markdowncell>"), 5)
    with pytest.raises(NoActiveBlockError):
        locator.cell()


def test_cell_outside_any_boundary() -> None:
    _, locator = _locate(CELLS, 1)
    with pytest.raises(NoActiveBlockError):
        locator.cell()


def test_last_cell_runs_to_the_end_without_trailing_blanks() -> None:
    _, locator = _locate(CELLS + "\n\n", 11)
    assert _span(locator.cell()) == (11, 11)


def test_custom_cell_patterns() -> None:
    text = "## one\nx = 1\n## two\ny = 2"
    buffer = SourceBuffer(text=text).at_line(2)
    locator = BlockLocator(buffer, cell_boundary=r"^##", codecell_beginning=r"^## one")
    assert _span(locator.cell()) == (2, 2)


def test_empty_cell() -> None:
    _, locator = _locate("# %%\n# %%\nx = 1", 1)
    block = locator.cell()
    assert block.is_empty


def test_region_expands_to_whole_lines() -> None:
    buffer, locator = _locate("a = 1\nb = 2\nc = 3", 1)
    block = locator.region(2, 8)
    assert block.kind is BlockKind.REGION
    assert _span(block) == (1, 2)
    assert block.text(buffer) == "a = 1\nb = 2"


def test_region_ending_at_a_line_start_excludes_that_line() -> None:
    _, locator = _locate("a = 1\nb = 2\nc = 3", 1)
    assert _span(locator.region(0, 6)) == (1, 1)


def test_whole_buffer() -> None:
    buffer, locator = _locate("a = 1\nb = 2\n", 1)
    block = locator.whole()
    assert block.kind is BlockKind.BUFFER
    assert block.text(buffer) == buffer.text


def test_next_statement_start() -> None:
    buffer, locator = _locate(CONDITIONAL, 1)
    block = locator.statement()
    assert locator.next_statement_start(block) == buffer.text.index("after")
    last = locator.statement(buffer.text.index("after"))
    assert locator.next_statement_start(last) == len(buffer.text)
