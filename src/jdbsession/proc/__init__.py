from __future__ import annotations

import os
from typing import IO, TYPE_CHECKING, Optional, Protocol

if os.name == "nt":
    from ._winproc import spawn as _spawn
else:
    from ._unixproc import spawn as _spawn


__all__ = ["spawn", "Process"]


class Process(Protocol):
    @property
    def pid(self) -> int: ...
    @property
    def stdin(self) -> Optional[IO[bytes]]: ...
    @property
    def stdout(self) -> Optional[IO[bytes]]: ...
    @property
    def returncode(self) -> Optional[int]: ...
    def is_running(self) -> bool: ...
    def terminate(self) -> None: ...
    def kill(self) -> None: ...
    def wait(self, timeout: Optional[float] = None) -> int: ...


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    def spawn(
        argv: Sequence[str],
        *,
        cwd: os.PathLike | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Process: ...
else:
    spawn = _spawn
