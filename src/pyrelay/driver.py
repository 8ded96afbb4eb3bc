"""High-level send operations: locate a unit, prepare it, send it."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from pyrelay.config import Settings, load_settings
from pyrelay.echo import EchoController, Notify, OutputObserver, SendRequest
from pyrelay.errors import NoActiveBlockError
from pyrelay.locator import Block, BlockKind, BlockLocator
from pyrelay.session import Confirm, DirectoryResolver, SessionManager
from pyrelay.source import SourceBuffer
from pyrelay.transform import dedent, file_bootstrap_command, with_coding_cookie, wrap_region


@dataclass(frozen=True)
class SendOutcome:
    """What one send did. ``point`` is the cursor afterwards."""

    target: str
    block: Block
    text: str
    point: int
    observer: OutputObserver | None

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the captured output to be flushed; True when there is nothing to wait for."""
        if self.observer is None:
            return True
        return self.observer.wait(timeout)


class Driver:
    """Send statements, definitions, groups, cells, regions and files to a session."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        manager: SessionManager | None = None,
        notify: Notify | None = None,
        project_root: DirectoryResolver | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.manager = manager or SessionManager(self.settings, project_root=project_root)
        self.echo = EchoController(self.settings, notify)

    def locator(self, buffer: SourceBuffer) -> BlockLocator:
        return BlockLocator(
            buffer,
            cell_boundary=self.settings.cell_boundary_regexp,
            codecell_beginning=self.settings.codecell_beginning_regexp,
        )

    def send_statement(self, buffer: SourceBuffer, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).statement()
        return self._send_block(buffer, block, dedent(block.text(buffer)), step=step)

    def send_top_statement(self, buffer: SourceBuffer, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).top_statement()
        return self._send_block(buffer, block, block.text(buffer), step=step)

    def send_defun(self, buffer: SourceBuffer, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).defun()
        if block is None:
            raise NoActiveBlockError("There is no function definition around point")
        return self._send_block(buffer, block, dedent(block.text(buffer)), step=step)

    def send_defclass(self, buffer: SourceBuffer, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).defclass()
        if block is None:
            raise NoActiveBlockError("There is no class definition around point")
        return self._send_block(buffer, block, dedent(block.text(buffer)), step=step)

    def send_group(self, buffer: SourceBuffer, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).group()
        return self._send_block(buffer, block, block.text(buffer), step=step)

    def send_codecell(self, buffer: SourceBuffer, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).cell()
        if block.is_empty or not block.text(buffer).strip():
            raise NoActiveBlockError("The codecell is empty")
        text = with_coding_cookie(block.text(buffer), buffer.encoding)
        return self._send_block(buffer, block, text, step=step)

    def send_region(self, buffer: SourceBuffer, start: int, end: int, *, step: bool = False) -> SendOutcome:
        block = self.locator(buffer).region(start, end)
        text = with_coding_cookie(wrap_region(block.text(buffer)), buffer.encoding)
        return self._send_block(buffer, block, text, step=step)

    def send_buffer(self, buffer: SourceBuffer, *, send_main: bool = False) -> SendOutcome:
        block = self.locator(buffer).whole()
        text = with_coding_cookie(buffer.text, buffer.encoding)
        return self._send_block(buffer, block, text, send_main=send_main)

    def send_region_or_buffer(
        self,
        buffer: SourceBuffer,
        region: tuple[int, int] | None = None,
        *,
        send_main: bool = False,
    ) -> SendOutcome:
        if region is not None and region[0] != region[1]:
            return self.send_region(buffer, *region)
        return self.send_buffer(buffer, send_main=send_main)

    def send_file(
        self,
        path: Path,
        *,
        source: SourceBuffer | None = None,
        encoding: str | None = None,
        send_main: bool = False,
    ) -> SendOutcome:
        """Have the interpreter load and run ``path`` itself."""

        source = source or SourceBuffer.from_file(path, encoding=encoding or self.settings.encoding)
        command = file_bootstrap_command(path.resolve(), encoding or source.encoding, send_main=send_main)
        return self._send_block(source, self.locator(source).whole(), command, send_main=send_main)

    def toggle_dedicated(self, buffer: SourceBuffer) -> bool:
        enabled = self.manager.toggle_dedicated(buffer)
        logger.info("session.dedicated source={} enabled={}", buffer.name, enabled)
        return enabled

    def set_local_target(self, buffer: SourceBuffer, target: str | None) -> None:
        self.manager.set_local_target(buffer, target)

    def kill(self, buffer: SourceBuffer | None = None, *, destroy_transcript: bool = False) -> bool:
        return self.manager.kill(self.manager.target_for(buffer), destroy_transcript=destroy_transcript)

    def kill_all(
        self,
        *,
        destroy_transcripts: bool = False,
        confirm: Confirm | None = None,
        confirm_each: bool = False,
    ) -> list[str]:
        return self.manager.kill_all(
            destroy_transcripts=destroy_transcripts,
            confirm=confirm,
            confirm_each=confirm_each,
        )

    def _send_block(
        self,
        buffer: SourceBuffer,
        block: Block,
        text: str,
        *,
        step: bool = False,
        send_main: bool = True,
    ) -> SendOutcome:
        session = self.manager.ensure_running(source=buffer)
        observer = self.echo.send(session, SendRequest(text=text, send_main=send_main))
        self.manager.mark_sent(session, buffer, block)
        point = self.locator(buffer).next_statement_start(block) if step else buffer.point
        logger.info(
            "send.{} target={} lines={}-{}",
            block.kind,
            session.name,
            block.first_line,
            block.last_line,
        )
        return SendOutcome(target=session.name, block=block, text=text, point=point, observer=observer)


SENDERS: dict[BlockKind, Callable[[Driver, SourceBuffer], SendOutcome]] = {
    BlockKind.STATEMENT: Driver.send_statement,
    BlockKind.TOP_STATEMENT: Driver.send_top_statement,
    BlockKind.DEFUN: Driver.send_defun,
    BlockKind.DEFCLASS: Driver.send_defclass,
    BlockKind.GROUP: Driver.send_group,
    BlockKind.CELL: Driver.send_codecell,
    BlockKind.BUFFER: Driver.send_buffer,
}
