from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from pyrelay.config import Settings, load_settings
from pyrelay.driver import Driver
from pyrelay.echo import EchoMessage
from pyrelay.session import SessionManager

WAIT_SECONDS = 15.0


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("PYRELAY_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return load_settings(
        interpreter=sys.executable,
        starting_directory=str(tmp_path),
        ready_timeout=WAIT_SECONDS,
        echo_output=True,
    )


@pytest.fixture
def manager(settings: Settings) -> Iterator[SessionManager]:
    manager = SessionManager(settings)
    yield manager
    manager.kill_all(destroy_transcripts=True)


@pytest.fixture
def messages() -> list[EchoMessage]:
    return []


@pytest.fixture
def driver(settings: Settings, manager: SessionManager, messages: list[EchoMessage]) -> Driver:
    return Driver(settings, manager=manager, notify=messages.append)
