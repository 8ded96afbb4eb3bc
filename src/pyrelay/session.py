"""Interpreter subprocess lifecycle."""

from __future__ import annotations

import codecs
import os
import re
import shutil
import subprocess
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from pyrelay.config import Settings
from pyrelay.errors import ConfigurationError, SessionUnavailableError
from pyrelay.prompt import PromptBoundary
from pyrelay.source import SourceBuffer
from pyrelay.transform import file_bootstrap_command

if TYPE_CHECKING:
    from pyrelay.echo import CaptureBuffer
    from pyrelay.locator import Block

SHARED_TARGET = "Python"
READ_CHUNK_SIZE = 4096
TRANSCRIPT_TAIL = 256
COMPOUND_RE = re.compile(r"^\s*(?:@|(?:async\s+)?(?:if|for|while|with|try|def|class|match)\b)")

OutputObserver = Callable[[str], None]
Transmit = Callable[["InterpreterSession", str], None]
DirectoryResolver = Callable[[SourceBuffer | None], Path | None]
Confirm = Callable[[str], bool]


class SessionState(StrEnum):
    NOT_STARTED = "not-started"
    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    KILLED = "killed"


class Transcript:
    """Accumulated interpreter output plus echoed input."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._parts: list[str] = []

    def append(self, chunk: str) -> None:
        with self._lock:
            self._parts.append(chunk)

    @property
    def text(self) -> str:
        with self._lock:
            return "".join(self._parts)

    def tail(self, size: int = TRANSCRIPT_TAIL) -> str:
        with self._lock:
            collected: list[str] = []
            remaining = size
            for part in reversed(self._parts):
                collected.append(part[-remaining:])
                remaining -= len(part)
                if remaining <= 0:
                    break
            return "".join(reversed(collected))

    def clear(self) -> None:
        with self._lock:
            self._parts.clear()


@dataclass(frozen=True)
class PlainTransmit:
    """Default transmission: one line as is, longer text through a file.

    ``send_main=False`` drops top-level ``if __name__ == "__main__":`` blocks;
    only whole-buffer and file sends ask for that.
    """

    encoding: str = "utf-8"
    send_main: bool = True

    def __call__(self, session: InterpreterSession, text: str) -> None:
        if "\n" not in text.rstrip("\n") and not COMPOUND_RE.match(text):
            session.write(text.rstrip("\n") + "\n")
            return
        with tempfile.NamedTemporaryFile(
            "w",
            encoding=self.encoding,
            prefix="pyrelay-",
            suffix=".py",
            delete=False,
        ) as handle:
            handle.write(text)
        command = file_bootstrap_command(
            Path(handle.name),
            self.encoding,
            send_main=self.send_main,
            delete=True,
        )
        session.write(command + "\n")


@dataclass(frozen=True)
class SourceRecord:
    dedicated: bool = False
    target: str | None = None


@dataclass(frozen=True)
class TargetRecord:
    """The last span sent to one target."""

    target: str
    source: str
    first_line: int
    last_line: int
    sent_at: datetime


class InterpreterSession:
    """One live interpreter process and its transcript."""

    def __init__(
        self,
        name: str,
        process: subprocess.Popen[bytes],
        transcript: Transcript,
        boundary: PromptBoundary,
        *,
        encoding: str = "utf-8",
    ) -> None:
        self.name = name
        self.process = process
        self.transcript = transcript
        self.boundary = boundary
        self.encoding = encoding
        self.visible = False
        self.history: list[str] = []
        self.capture: CaptureBuffer | None = None
        self._lock = threading.RLock()
        self._observers: list[OutputObserver] = []
        self._killed = False
        self._ever_ready = False
        self._reader = threading.Thread(target=self._read_output, name=f"pyrelay-reader-{name}", daemon=True)

    def start(self) -> None:
        self._reader.start()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return not self._killed and self.process.poll() is None

    @property
    def state(self) -> SessionState:
        if not self.alive:
            return SessionState.KILLED
        if self.is_ready():
            return SessionState.READY
        return SessionState.BUSY if self._ever_ready else SessionState.STARTING

    def is_ready(self) -> bool:
        ready = self.boundary(self.transcript.tail())
        if ready:
            self._ever_ready = True
        return ready

    def add_observer(self, observer: OutputObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def remove_observer(self, observer: OutputObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def send(self, text: str, *, transmit: Transmit | None = None) -> None:
        """Transmit ``text``; ``transmit`` replaces plain transmission for this call only."""

        if not self.alive:
            raise SessionUnavailableError(f"Session {self.name} has no live process")
        (transmit or PlainTransmit(self.encoding))(self, text)

    def write(self, data: str) -> None:
        stdin = self.process.stdin
        if stdin is None:
            raise SessionUnavailableError(f"Session {self.name} has no input stream")
        try:
            stdin.write(data.encode(self.encoding))
            stdin.flush()
        except (BrokenPipeError, ValueError) as exc:
            raise SessionUnavailableError(f"Session {self.name} stopped accepting input") from exc

    def kill(self) -> None:
        with self._lock:
            self._killed = True
            self._observers.clear()
            self.capture = None
        if self.process.poll() is None:
            self.process.kill()
        try:
            self.process.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            logger.warning("session.kill.timeout target={} pid={}", self.name, self.pid)

    def _read_output(self) -> None:
        stream = self.process.stdout
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        fd = stream.fileno()
        while True:
            try:
                data = os.read(fd, READ_CHUNK_SIZE)
            except OSError:
                break
            chunk = decoder.decode(data, final=not data)
            if chunk:
                self._dispatch(chunk)
            if not data:
                break
        logger.debug("session.reader.eof target={}", self.name)

    def _dispatch(self, chunk: str) -> None:
        with self._lock:
            if self._killed:
                return
            self.transcript.append(chunk)
            observers = list(self._observers)
        for observer in observers:
            observer(chunk)


class SessionManager:
    """Own every interpreter session, keyed by target name."""

    def __init__(self, settings: Settings, *, project_root: DirectoryResolver | None = None) -> None:
        self.settings = settings
        self.boundary = PromptBoundary(settings.prompt_regexp)
        self._project_root = project_root
        self._sessions: dict[str, InterpreterSession] = {}
        self._transcripts: dict[str, Transcript] = {}
        self._sources: dict[str, SourceRecord] = {}
        self._targets: dict[str, TargetRecord] = {}

    def target_for(self, source: SourceBuffer | None = None) -> str:
        if source is None:
            return SHARED_TARGET
        record = self._sources.get(source.name, SourceRecord(dedicated=self.settings.dedicated))
        if record.target:
            return record.target
        if record.dedicated:
            return f"{SHARED_TARGET}[{source.name}]"
        return SHARED_TARGET

    def is_dedicated(self, source: SourceBuffer) -> bool:
        return self._sources.get(source.name, SourceRecord(dedicated=self.settings.dedicated)).dedicated

    def set_dedicated(self, source: SourceBuffer, enabled: bool) -> None:
        record = self._sources.get(source.name, SourceRecord())
        self._sources[source.name] = SourceRecord(dedicated=enabled, target=record.target)

    def toggle_dedicated(self, source: SourceBuffer) -> bool:
        enabled = not self.is_dedicated(source)
        self.set_dedicated(source, enabled)
        return enabled

    def set_local_target(self, source: SourceBuffer, target: str | None) -> None:
        record = self._sources.get(source.name, SourceRecord(dedicated=self.settings.dedicated))
        self._sources[source.name] = SourceRecord(dedicated=record.dedicated, target=target or None)

    def get(self, target: str) -> InterpreterSession | None:
        session = self._sessions.get(target)
        if session is not None and not session.alive:
            del self._sessions[target]
            return None
        return session

    def state(self, target: str) -> SessionState:
        session = self._sessions.get(target)
        if session is None:
            return SessionState.NOT_STARTED
        return session.state

    def get_or_create(self, target: str | None = None, source: SourceBuffer | None = None) -> InterpreterSession:
        target = target or self.target_for(source)
        session = self.get(target)
        if session is not None:
            return session
        return self._spawn(target, source)

    def ensure_running(self, target: str | None = None, source: SourceBuffer | None = None) -> InterpreterSession:
        """Get or create a session and wait a bounded time for its first prompt.

        A timeout is not an error; the session is returned either way.
        """

        session = self.get_or_create(target, source)
        deadline = time.monotonic() + self.settings.ready_timeout
        while not session.is_ready():
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not session.alive:
                logger.warning(
                    "session.ready.timeout target={} waited={:.1f}s",
                    session.name,
                    self.settings.ready_timeout,
                )
                break
            time.sleep(min(self.settings.poll_interval, remaining))
        return session

    def is_busy(self, target: str) -> bool:
        session = self.get(target)
        return session is not None and not session.is_ready()

    def sessions(self) -> list[InterpreterSession]:
        for target in list(self._sessions):
            self.get(target)
        return list(self._sessions.values())

    def transcript(self, target: str) -> Transcript | None:
        return self._transcripts.get(target)

    def kill(self, target: str, *, destroy_transcript: bool = False) -> bool:
        session = self._sessions.pop(target, None)
        if session is not None:
            session.kill()
            logger.info("session.kill target={} pid={}", target, session.pid)
        if destroy_transcript:
            self._transcripts.pop(target, None)
            self._targets.pop(target, None)
        return session is not None

    def kill_all(
        self,
        *,
        destroy_transcripts: bool = False,
        confirm: Confirm | None = None,
        confirm_each: bool = False,
    ) -> list[str]:
        """Kill live sessions, asking ``confirm`` once or per session when given."""

        targets = [session.name for session in self.sessions()]
        if confirm is not None and not confirm_each and targets:
            if not confirm(f"Kill all {len(targets)} Python shells?"):
                return []
        killed: list[str] = []
        for target in targets:
            if confirm is not None and confirm_each and not confirm(f"Kill Python shell {target}?"):
                continue
            self.kill(target, destroy_transcript=destroy_transcripts)
            killed.append(target)
        return killed

    def mark_sent(self, session: InterpreterSession, source: SourceBuffer, block: Block) -> TargetRecord:
        record = TargetRecord(
            target=session.name,
            source=source.name,
            first_line=block.first_line,
            last_line=block.last_line,
            sent_at=datetime.now(UTC),
        )
        self._targets[session.name] = record
        return record

    def last_sent(self, target: str) -> TargetRecord | None:
        return self._targets.get(target)

    def working_directory(self, source: SourceBuffer | None = None) -> Path:
        mode = self.settings.starting_directory
        if mode == "project-root":
            root = self._project_root(source) if self._project_root is not None else None
            if root is not None:
                return root
            mode = "current-directory"
        if mode == "current-directory":
            if source is not None and source.path is not None:
                return source.path.parent.resolve()
            return Path.cwd()
        path = Path(mode).expanduser()
        if not path.is_dir():
            raise ConfigurationError(f"Starting directory {mode!r} is not a directory")
        return path

    def _resolve_interpreter(self) -> str:
        executable = shutil.which(self.settings.interpreter)
        if executable is None:
            raise ConfigurationError(f"Python interpreter {self.settings.interpreter!r} could not be found")
        return executable

    def _spawn(self, target: str, source: SourceBuffer | None) -> InterpreterSession:
        cwd = self.working_directory(source)
        executable = self._resolve_interpreter()
        env = os.environ.copy()
        env["PYTHONUNBUFFERED"] = "1"
        env["PYTHON_BASIC_REPL"] = "1"
        env.setdefault("PYTHONIOENCODING", self.settings.encoding)
        try:
            process = subprocess.Popen(  # noqa: S603
                [executable, *self.settings.interpreter_args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=str(cwd),
                env=env,
            )
        except OSError as exc:
            raise ConfigurationError(f"Cannot start {executable}: {exc}") from exc

        transcript = self._transcripts.setdefault(target, Transcript())
        if transcript.tail(1):
            # The old prompt must not read as readiness of the new process.
            transcript.append("\n")
        session = InterpreterSession(target, process, transcript, self.boundary, encoding=self.settings.encoding)
        session.start()
        self._sessions[target] = session
        logger.info("session.start target={} pid={} cwd={}", target, process.pid, cwd)
        return session
