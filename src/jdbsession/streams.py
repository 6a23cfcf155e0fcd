"""Line-oriented drivers for the standard streams of a child process.

``SessionInput`` writes commands to the child's stdin. ``SessionOutput``
owns the child's stdout: a daemon thread moves raw bytes from the pipe into
a line buffer, and every read operation looks at that same buffer, so the
blocking ``read`` and the non-blocking ``is_ready``/``read_all`` always
agree on what is available.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections import deque
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = [
    "SessionInput",
    "SessionOutput",
]

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "utf-8"
CHUNK_SIZE = 4096


class SessionInput:
    def __init__(
        self, stream: IO[bytes] | None, *, encoding: str = DEFAULT_ENCODING
    ) -> None:
        self._stream = stream
        self._encoding = encoding
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._stream is None

    def send(self, command: str) -> None:
        self.send_all((command,))

    def send_all(self, commands: Iterable[str]) -> None:
        """Write each command as its own line, flushing after every one.

        A broken or concurrently closed pipe is not reported: the caller
        finds out through ``Session.is_running`` or an empty ``read``.
        """
        stream = self._stream
        if stream is None:
            return

        try:
            for command in commands:
                stream.write(f"{command}\n".encode(self._encoding))
                stream.flush()
        except (OSError, ValueError) as e:
            logger.debug("Dropped command, stdin is unusable: %s", e)

    def close(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None

        if stream is not None:
            # flushing into a dead child raises BrokenPipeError
            with contextlib.suppress(OSError):
                stream.close()


class SessionOutput:
    def __init__(
        self,
        stream: IO[bytes] | None,
        *,
        encoding: str = DEFAULT_ENCODING,
        name: str = "session-output",
    ) -> None:
        self._stream = stream
        self._encoding = encoding
        self._lines: deque[str] = deque()
        self._cond = threading.Condition()
        self._closed = stream is None
        self._eof = stream is None
        self._error: OSError | None = None
        self._reader: threading.Thread | None = None

        if stream is not None:
            self._reader = threading.Thread(target=self._pump, name=name, daemon=True)
            self._reader.start()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def at_eof(self) -> bool:
        """True once nothing more can be read: closed, or drained at end of stream."""
        with self._cond:
            return self._closed or (self._eof and not self._lines)

    def _emit(self, raw: bytes) -> None:
        line = raw.decode(self._encoding, errors="replace")
        if line.endswith("\r"):
            line = line[:-1]
        with self._cond:
            self._lines.append(line)
            self._cond.notify_all()

    def _pump(self) -> None:
        stream = self._stream
        assert stream is not None
        read = getattr(stream, "read1", stream.read)
        pending = b""

        try:
            while chunk := read(CHUNK_SIZE):
                *complete, pending = (pending + chunk).split(b"\n")
                for raw in complete:
                    self._emit(raw)
            if pending:
                self._emit(pending)
        except (OSError, ValueError) as e:
            with self._cond:
                if not self._closed:
                    logger.debug("Output pipe failed: %s", e)
                    self._error = e if isinstance(e, OSError) else OSError(str(e))
        finally:
            with self._cond:
                self._eof = True
                self._cond.notify_all()
            with contextlib.suppress(OSError):
                stream.close()

    def read(self) -> str:
        """Block until a full line is available and return it.

        Returns an empty string at end of stream or once the output was
        closed. Raises ``OSError`` if the pipe broke before any line
        could be read.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._lines or self._eof or self._closed)
            if self._closed:
                return ""
            if self._lines:
                return self._lines.popleft()
            if self._error is not None:
                raise self._error
            return ""

    def read_all(self) -> list[str]:
        with self._cond:
            if self._closed:
                return []

            lines = []
            while self._ready():
                lines.append(self._lines.popleft())

            if not lines and self._error is not None:
                raise self._error
            return lines

    def _ready(self) -> bool:
        return not self._closed and bool(self._lines)

    def is_ready(self) -> bool:
        with self._cond:
            return self._ready()

    def close(self) -> None:
        """Stop buffering output and wake blocked readers.

        The reader thread owns the pipe and closes it once the writing end
        is gone, that is when the child exits. Closing it from here would
        block on the buffer lock held by the pending read. Use ``join`` to
        wait for the release.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._lines.clear()
            self._cond.notify_all()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the reader thread to close the pipe and exit.

        Returns False if it is still running after ``timeout`` seconds.
        """
        if self._reader is None:
            return True
        self._reader.join(timeout)
        return not self._reader.is_alive()
