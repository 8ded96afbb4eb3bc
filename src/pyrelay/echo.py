"""Echo of sent input and single-flush capture of interpreter output."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from loguru import logger

from pyrelay.config import Settings
from pyrelay.errors import SessionBusyError
from pyrelay.prompt import PromptBoundary
from pyrelay.session import InterpreterSession, PlainTransmit, Transmit
from pyrelay.transform import prepare_echo

TRACEBACK_MARKER = "Traceback (most recent call last):"
CONTINUATION_PROMPT = "... "
EXCEPTION_TEXT = "Exception during evaluation."
EMPTY_TEXT = "No output was produced."

MessageKind = Literal["exception", "empty", "output"]


@dataclass(frozen=True)
class SendRequest:
    text: str
    echo: bool = True
    add_to_history: bool = False
    send_main: bool = True


@dataclass(frozen=True)
class EchoMessage:
    kind: MessageKind
    text: str


Notify = Callable[[EchoMessage], None]


def log_message(message: EchoMessage) -> None:
    logger.info("echo.output kind={} text={}", message.kind, message.text)


def summarize_output(output: str) -> EchoMessage:
    if TRACEBACK_MARKER in output:
        return EchoMessage("exception", EXCEPTION_TEXT)
    text = output.strip()
    if not text:
        return EchoMessage("empty", EMPTY_TEXT)
    return EchoMessage("output", text)


def format_echo_input(text: str) -> str:
    """Transcript form of some input: continuation prompts after the first line."""

    first, *rest = text.split("\n")
    return "\n".join([first, *(CONTINUATION_PROMPT + line for line in rest)])


class CaptureBuffer:
    """Raw output of one send, in arrival order."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def append(self, chunk: str) -> None:
        self._parts.append(chunk)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def clear(self) -> None:
        self._parts.clear()


class OutputObserver:
    """Accumulate chunks until the prompt boundary shows up, then flush once.

    Chunks may split anywhere, lines and prompts included.
    """

    def __init__(
        self,
        boundary: PromptBoundary,
        notify: Notify,
        *,
        buffer: CaptureBuffer | None = None,
        on_flush: Callable[[OutputObserver], None] | None = None,
    ) -> None:
        self.boundary = boundary
        self.buffer = buffer if buffer is not None else CaptureBuffer()
        self._notify = notify
        self._on_flush = on_flush
        self._lock = threading.Lock()
        self.flushed = False
        self.done = threading.Event()

    def __call__(self, chunk: str) -> None:
        with self._lock:
            if self.flushed:
                return
            self.buffer.append(chunk)
            output = self.buffer.text
            offset = self.boundary.match(output)
            if offset is None:
                return
            self.buffer.clear()
            self.flushed = True
        if self._on_flush is not None:
            self._on_flush(self)
        try:
            self._notify(summarize_output(output[:offset]))
        finally:
            self.done.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self.done.wait(timeout)


@dataclass
class EchoingTransmit:
    """Transmission strategy for one send: echo, install capture, then transmit."""

    controller: EchoController
    inner: Transmit
    echo_input: bool
    echo_output: bool
    observer: OutputObserver | None = field(default=None, init=False)

    def __call__(self, session: InterpreterSession, text: str) -> None:
        if self.echo_input:
            self.controller.echo_input_text(session, text)
        if self.echo_output:
            self.observer = self.controller.install_capture(session)
        self.inner(session, text)

    def abandon(self, session: InterpreterSession) -> None:
        if self.observer is not None and not self.observer.flushed:
            self.controller.release_capture(session, self.observer)


class EchoController:
    """Drive one send end to end with echo and output capture."""

    def __init__(self, settings: Settings, notify: Notify | None = None) -> None:
        self.settings = settings
        self.notify = notify or log_message

    def policies(self, session: InterpreterSession) -> tuple[bool, bool]:
        echo_output = self.settings.echo_output
        if echo_output == "when-shell-not-visible":
            return self.settings.echo_input, not session.visible
        return self.settings.echo_input, bool(echo_output)

    def send(self, session: InterpreterSession, request: SendRequest) -> OutputObserver | None:
        """Send ``request`` and return the observer waiting for its output, if any.

        Plain transmission is back in place once this returns or raises; a
        failed send drops its capture without flushing.
        """

        echo_input, echo_output = self.policies(session)
        echo_input = echo_input and request.echo
        echo_output = echo_output and request.echo
        if echo_output and session.capture is not None:
            raise SessionBusyError(f"Session {session.name} is still capturing the previous send")

        strategy = EchoingTransmit(
            controller=self,
            inner=PlainTransmit(self.settings.encoding, send_main=request.send_main),
            echo_input=echo_input,
            echo_output=echo_output,
        )
        try:
            session.send(request.text, transmit=strategy)
        except BaseException:
            strategy.abandon(session)
            raise
        if request.add_to_history:
            session.history.append(request.text)
        logger.debug(
            "echo.send target={} chars={} echo_input={} echo_output={}",
            session.name,
            len(request.text),
            echo_input,
            echo_output,
        )
        return strategy.observer

    def echo_input_text(self, session: InterpreterSession, text: str) -> None:
        shown = prepare_echo(
            text,
            self.settings.echo_input_lines_head,
            self.settings.echo_input_lines_tail,
        )
        if shown.strip():
            session.transcript.append(format_echo_input(shown) + "\n")

    def install_capture(self, session: InterpreterSession) -> OutputObserver:
        buffer = CaptureBuffer()
        observer = OutputObserver(
            session.boundary,
            self.notify,
            buffer=buffer,
            on_flush=lambda done: self.release_capture(session, done),
        )
        session.capture = buffer
        session.add_observer(observer)
        return observer

    def release_capture(self, session: InterpreterSession, observer: OutputObserver) -> None:
        session.remove_observer(observer)
        if session.capture is observer.buffer:
            session.capture = None
