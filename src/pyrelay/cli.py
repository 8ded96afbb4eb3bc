"""Command line entry point for pyrelay."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from pyrelay import __version__
from pyrelay.config import Settings, load_settings
from pyrelay.driver import SENDERS, Driver
from pyrelay.echo import EchoMessage
from pyrelay.errors import NoActiveBlockError, PyrelayError
from pyrelay.locator import Block, BlockKind, BlockLocator
from pyrelay.logging_utils import configure_logging
from pyrelay.session import SessionManager
from pyrelay.source import SourceBuffer

console = Console()

app = typer.Typer(
    name="pyrelay",
    help="Send Python statements, definitions and cells to a live interpreter.",
    add_completion=False,
    rich_markup_mode="rich",
)

_STYLES = {"exception": "red", "empty": "yellow", "output": "green"}


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pyrelay {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(False, "--version", "-V", callback=_version_callback, is_eager=True),
) -> None:
    _ = version


def _load(workspace: Path, **overrides: object) -> Settings:
    try:
        return load_settings(workspace, **overrides)
    except PyrelayError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


def _locate(locator: BlockLocator, unit: BlockKind) -> Block:
    if unit is BlockKind.STATEMENT:
        return locator.statement()
    if unit is BlockKind.TOP_STATEMENT:
        return locator.top_statement()
    if unit is BlockKind.GROUP:
        return locator.group()
    if unit is BlockKind.CELL:
        return locator.cell()
    if unit is BlockKind.BUFFER:
        return locator.whole()
    if unit in (BlockKind.DEFUN, BlockKind.DEFCLASS):
        block = locator.defun() if unit is BlockKind.DEFUN else locator.defclass()
        if block is None:
            raise NoActiveBlockError(f"There is no {unit} around point")
        return block
    raise NoActiveBlockError(f"Cannot locate a {unit} from a line number")


def _print_message(message: EchoMessage) -> None:
    console.print(message.text, style=_STYLES[message.kind], markup=False, highlight=False)


@app.command()
def locate(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Python source file"),
    line: int = typer.Option(1, "--line", "-l", min=1, help="1-based cursor line"),
    unit: BlockKind = typer.Option(BlockKind.STATEMENT, "--unit", "-u", help="Unit to locate"),
) -> None:
    """Print the span and text of the unit around a line."""

    settings = _load(Path.cwd())
    buffer = SourceBuffer.from_file(file, line=line, encoding=settings.encoding)
    locator = BlockLocator(
        buffer,
        cell_boundary=settings.cell_boundary_regexp,
        codecell_beginning=settings.codecell_beginning_regexp,
    )
    try:
        block = _locate(locator, unit)
    except NoActiveBlockError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        return
    except PyrelayError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    typer.echo(f"{block.kind} {block.first_line}-{block.last_line}")
    typer.echo(block.text(buffer))


@app.command()
def send(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Python source file"),
    line: int = typer.Option(1, "--line", "-l", min=1, help="1-based cursor line"),
    unit: BlockKind = typer.Option(BlockKind.STATEMENT, "--unit", "-u", help="Unit to send"),
    interpreter: str | None = typer.Option(None, "--interpreter", "-i", help="Interpreter executable"),
    timeout: float = typer.Option(10.0, "--timeout", help="Seconds to wait for the prompt"),
    send_main: bool = typer.Option(False, "--send-main", help="Keep `if __name__ == '__main__':` blocks"),
    transcript: bool = typer.Option(False, "--transcript", help="Print the session transcript"),
) -> None:
    """Start an interpreter, send one unit and print the captured summary."""

    configure_logging(profile="cli")
    overrides: dict[str, object] = {"echo_output": True}
    if interpreter:
        overrides["interpreter"] = interpreter
    settings = _load(Path.cwd(), **overrides)
    buffer = SourceBuffer.from_file(file, line=line, encoding=settings.encoding)
    driver = Driver(settings, notify=_print_message)
    try:
        if unit is BlockKind.BUFFER:
            outcome = driver.send_buffer(buffer, send_main=send_main)
        elif unit in SENDERS:
            outcome = SENDERS[unit](driver, buffer)
        else:
            raise NoActiveBlockError(f"Cannot send a {unit} from a line number")
        if not outcome.wait(timeout):
            console.print(f"[yellow]No prompt within {timeout:.1f}s[/yellow]")
        if transcript:
            session = driver.manager.get(outcome.target)
            if session is not None:
                typer.echo(session.transcript.text)
    except NoActiveBlockError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
    except PyrelayError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    finally:
        driver.kill_all(destroy_transcripts=True)


@app.command()
def sessions(
    file: Path = typer.Argument(..., help="Python source file"),
    dedicated: bool = typer.Option(False, "--dedicated", help="Use a private session for this file"),
) -> None:
    """Print the session target a file's sends would go to."""

    manager = SessionManager(_load(Path.cwd()))
    buffer = SourceBuffer(text="", name=file.name, path=file)
    if dedicated:
        manager.set_dedicated(buffer, True)
    typer.echo(manager.target_for(buffer))
