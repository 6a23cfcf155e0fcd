from __future__ import annotations

import logging
import os
import signal
import subprocess
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)


class _UnixProcess:
    def __init__(self, process: subprocess.Popen[bytes]) -> None:
        self.process = process

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdin(self) -> IO[bytes] | None:
        return self.process.stdin

    @property
    def stdout(self) -> IO[bytes] | None:
        return self.process.stdout

    @property
    def returncode(self) -> int | None:
        return self.process.poll()

    def is_running(self) -> bool:
        return self.process.poll() is None

    def terminate(self) -> None:
        # Popen.terminate() is a no-op once the child has been reaped
        self.process.terminate()

    def kill(self) -> None:
        if not self.is_running():
            return
        # the child leads its own process group, which its descendants inherit
        try:
            os.killpg(self.pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("pid=%d already gone", self.pid)
        # reap, otherwise the child lingers as a zombie and still looks alive
        self.process.wait()

    def wait(self, timeout: float | None = None) -> int:
        return self.process.wait(timeout)


def spawn(
    argv: Sequence[str],
    *,
    cwd: os.PathLike | None = None,
    env: Mapping[str, str] | None = None,
) -> _UnixProcess:
    process = subprocess.Popen(  # noqa: S603
        list(argv),
        cwd=cwd,
        env=env,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )
    return _UnixProcess(process)
