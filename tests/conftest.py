from __future__ import annotations

import shlex
import sys
import time
from pathlib import Path

import pytest

from jdbsession import Session, SessionBuilder

FIXTURES = Path(__file__).parent / "fixtures"
FAKE_REPL = FIXTURES / "fake_repl.py"


def fake_repl_program() -> str:
    return shlex.join([sys.executable, str(FAKE_REPL)])


def wait_ready(session: Session, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not session.is_ready() and session.is_running():
        if time.monotonic() > deadline:
            pytest.fail(f"no output within {timeout}s")
        time.sleep(0.01)


def read_line(session: Session, timeout: float = 10.0) -> str:
    """``Session.read`` that fails the test instead of hanging forever."""
    wait_ready(session, timeout)
    return session.read()


@pytest.fixture
def builder(tmp_path: Path) -> SessionBuilder:
    return (
        SessionBuilder()
        .program(fake_repl_program())
        .working_directory(tmp_path)
        .argfile_directory(tmp_path / "argfiles")
    )


@pytest.fixture
def session(builder: SessionBuilder):
    session = builder.build()
    session.start()
    assert read_line(session) == "ready"
    yield session
    session.force_quit()
