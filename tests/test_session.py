from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

from pyrelay.config import load_settings
from pyrelay.errors import ConfigurationError, SessionUnavailableError
from pyrelay.locator import BlockLocator
from pyrelay.session import SHARED_TARGET, SessionManager, SessionState, Transcript
from pyrelay.source import SourceBuffer

WAIT_SECONDS = 15.0


def _wait_for(predicate, timeout: float = WAIT_SECONDS) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_transcript_tail_spans_parts() -> None:
    transcript = Transcript()
    transcript.append("abc")
    transcript.append("de")
    transcript.append("f")
    assert transcript.text == "abcdef"
    assert transcript.tail(4) == "cdef"
    assert transcript.tail(100) == "abcdef"
    transcript.clear()
    assert transcript.text == ""


def test_target_naming(manager: SessionManager) -> None:
    source = SourceBuffer(text="", name="analysis.py")

    assert manager.target_for(None) == SHARED_TARGET
    assert manager.target_for(source) == "Python"

    manager.set_dedicated(source, True)
    assert manager.target_for(source) == "Python[analysis.py]"
    assert manager.target_for(SourceBuffer(text="", name="other.py")) == "Python"

    manager.set_local_target(source, "Scratch")
    assert manager.target_for(source) == "Scratch"
    manager.set_local_target(source, None)
    assert manager.target_for(source) == "Python[analysis.py]"

    assert manager.toggle_dedicated(source) is False
    assert manager.target_for(source) == "Python"


def test_dedicated_default_comes_from_settings(tmp_path: Path) -> None:
    manager = SessionManager(load_settings(dedicated=True, starting_directory=str(tmp_path)))
    assert manager.target_for(SourceBuffer(text="", name="a.py")) == "Python[a.py]"


def test_ensure_running_reaches_the_prompt(manager: SessionManager) -> None:
    assert manager.state(SHARED_TARGET) is SessionState.NOT_STARTED

    session = manager.ensure_running()

    assert session.alive
    assert session.is_ready()
    assert manager.state(SHARED_TARGET) is SessionState.READY
    assert not manager.is_busy(SHARED_TARGET)
    assert manager.get_or_create() is session
    assert manager.sessions() == [session]


def test_plain_send_reaches_the_interpreter(manager: SessionManager) -> None:
    session = manager.ensure_running()
    session.send("print(6 * 7)")
    assert _wait_for(lambda: "42" in session.transcript.text and session.is_ready())


def test_multiline_send_goes_through_a_file(manager: SessionManager) -> None:
    session = manager.ensure_running()
    session.send("def double(x):\n    return x * 2\n\ndouble(21)\n")
    assert _wait_for(lambda: "42" in session.transcript.text and session.is_ready())


def test_compound_single_line_goes_through_a_file(manager: SessionManager) -> None:
    session = manager.ensure_running()
    session.send("for i in range(3): print('n', i)")
    assert _wait_for(lambda: "n 2" in session.transcript.text and session.is_ready())


def test_kill_discards_pending_capture(manager: SessionManager) -> None:
    session = manager.ensure_running()
    flushed: list[str] = []
    session.capture = object()
    session.add_observer(flushed.append)

    assert manager.kill(SHARED_TARGET)

    assert not session.alive
    assert session.capture is None
    assert manager.state(SHARED_TARGET) is SessionState.NOT_STARTED
    assert manager.transcript(SHARED_TARGET) is session.transcript
    with pytest.raises(SessionUnavailableError):
        session.send("2+2")

    manager.ensure_running()
    assert manager.kill(SHARED_TARGET, destroy_transcript=True)
    assert manager.transcript(SHARED_TARGET) is None
    assert not manager.kill(SHARED_TARGET)


def test_restarted_session_reuses_its_transcript(manager: SessionManager) -> None:
    first = manager.ensure_running()
    manager.kill(SHARED_TARGET)
    second = manager.ensure_running()
    assert second is not first
    assert second.transcript is first.transcript
    assert second.is_ready()


def test_kill_all_with_confirmation(manager: SessionManager) -> None:
    source = SourceBuffer(text="", name="b.py")
    manager.set_dedicated(source, True)
    manager.get_or_create()
    manager.get_or_create(source=source)

    assert manager.kill_all(confirm=lambda _question: False) == []
    assert len(manager.sessions()) == 2

    killed = manager.kill_all(confirm=lambda question: "b.py" in question, confirm_each=True)
    assert killed == ["Python[b.py]"]
    assert [session.name for session in manager.sessions()] == ["Python"]

    assert manager.kill_all() == ["Python"]
    assert manager.sessions() == []


def test_readiness_poll_is_bounded(tmp_path: Path) -> None:
    settings = load_settings(
        interpreter=sys.executable,
        interpreter_args=["-c", "import time; time.sleep(30)"],
        starting_directory=str(tmp_path),
        ready_timeout=0.3,
        poll_interval=0.05,
    )
    manager = SessionManager(settings)
    try:
        started = time.monotonic()
        session = manager.ensure_running()
        elapsed = time.monotonic() - started

        assert session is not None
        assert elapsed < 0.3 + 2.0
        assert not session.is_ready()
        assert manager.state(SHARED_TARGET) is SessionState.STARTING
    finally:
        manager.kill_all()


def test_missing_interpreter_is_a_configuration_error(tmp_path: Path) -> None:
    manager = SessionManager(
        load_settings(interpreter="pyrelay-no-such-python", starting_directory=str(tmp_path))
    )
    with pytest.raises(ConfigurationError):
        manager.get_or_create()
    assert manager.sessions() == []


def test_missing_starting_directory_is_a_configuration_error(tmp_path: Path) -> None:
    manager = SessionManager(
        load_settings(interpreter=sys.executable, starting_directory=str(tmp_path / "missing"))
    )
    with pytest.raises(ConfigurationError):
        manager.get_or_create()


def test_working_directory_modes(tmp_path: Path) -> None:
    project = tmp_path / "project"
    (project / "pkg").mkdir(parents=True)
    source = SourceBuffer(text="", name="mod.py", path=project / "pkg" / "mod.py")

    manager = SessionManager(load_settings(), project_root=lambda _source: project)
    assert manager.working_directory(source) == project

    manager = SessionManager(load_settings())
    assert manager.working_directory(source) == (project / "pkg").resolve()
    assert manager.working_directory(None) == Path.cwd()


def test_mark_sent_records_the_span(manager: SessionManager) -> None:
    session = manager.ensure_running()
    source = SourceBuffer(text="a = 1\nb = 2", name="mod.py").at_line(2)
    block = BlockLocator(source).statement()

    record = manager.mark_sent(session, source, block)

    assert manager.last_sent(SHARED_TARGET) == record
    assert (record.source, record.first_line, record.last_line) == ("mod.py", 2, 2)
