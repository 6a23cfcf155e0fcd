from __future__ import annotations

import logging
import os
import subprocess
from typing import IO, TYPE_CHECKING

if os.name != "nt":
    msg = f"{os.name} is not supported"
    raise ImportError(msg) from None

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)


class _WinProcess:
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
        self.process.terminate()

    def kill(self) -> None:
        if not self.is_running():
            return
        result = subprocess.run(  # noqa: S603
            ["taskkill", "/F", "/T", "/PID", str(self.pid)],  # noqa: S607
            capture_output=True,
            check=False,
        )
        if result.returncode != 0:
            logger.debug(
                "taskkill pid=%d failed: %s", self.pid, result.stderr.decode().strip()
            )
        self.process.wait()

    def wait(self, timeout: float | None = None) -> int:
        return self.process.wait(timeout)


def spawn(
    argv: Sequence[str],
    *,
    cwd: os.PathLike | None = None,
    env: Mapping[str, str] | None = None,
) -> _WinProcess:
    process = subprocess.Popen(  # noqa: S603
        list(argv),
        cwd=cwd,
        env=env,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
    )
    return _WinProcess(process)
