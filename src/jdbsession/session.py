"""Controls one run of an interactive debugger (``jdb`` by default).

Example:
    session = (
        SessionBuilder()
        .working_directory(classes)
        .class_path([classes])
        .src_path([sources])
        .build()
        .run()
    )
    session.send("stop at calc.Calculator:8", "run calc.Calculator")
    line = session.read()
    ...
    session.quit()
"""

from __future__ import annotations

import atexit
import logging
import os
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from typing_extensions import Self

from .arguments import (
    ARGFILE_PREFIX,
    ARGFILE_THRESHOLD,
    ArgumentEncoder,
    ArgumentFile,
    EncodedArguments,
)
from .proc import Process, spawn
from .streams import SessionInput, SessionOutput
from .utils import Dirs

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from .config import SessionConfig

__all__ = [
    "Cleanup",
    "Session",
    "SessionBuilder",
    "SessionStateError",
    "build_argv",
]

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM = "jdb"
RELEASE_TIMEOUT = 1.0


class SessionStateError(RuntimeError):
    """The session is not in a state that allows the requested operation."""


def _split(args: str, posix: Optional[bool] = None) -> list[str]:
    """Split a command line the way the platform shell would.

    Windows mode keeps quote characters inside tokens, so a quoted token
    such as ``"C:\\Program Files\\jdb"`` has its surrounding quotes removed.
    """
    if posix is None:
        posix = os.name != "nt"

    tokens = shlex.split(args, posix=posix)
    if not posix:
        tokens = [
            t[1:-1] if len(t) >= 2 and t[0] == t[-1] and t[0] in "\"'" else t
            for t in tokens
        ]
    return tokens


def build_argv(
    program: str,
    *,
    src_path: Optional[str],
    class_path: Optional[str],
    class_signature: Optional[str] = None,
    class_args: Optional[str] = None,
) -> list[str]:
    if class_path is None:
        raise SessionStateError("Class path cannot be empty")
    if src_path is None:
        raise SessionStateError("Source path cannot be empty")

    try:
        command = _split(program)
    except ValueError as e:
        raise SessionStateError(f"Invalid program {program!r}: {e}") from None

    argv = [*command, "-sourcepath", src_path, "-classpath", class_path]
    if class_signature:
        argv.append(class_signature)
    if class_args:
        argv.append(class_args)
    return argv


class Cleanup:
    """Releases a started session: closes its streams, kills a live process.

    Returned by ``Session.start``. Safe to call any number of times, from
    any thread, before or after ``Session.quit``.
    """

    def __init__(
        self, process: Process, stdin: SessionInput, stdout: SessionOutput
    ) -> None:
        self._process = process
        self._stdin = stdin
        self._stdout = stdout

    def __call__(self) -> None:
        self._stdin.close()
        self._stdout.close()
        if self._process.is_running():
            logger.debug("Killing pid=%d left running at cleanup", self._process.pid)
            self._process.kill()


class Session:
    def __init__(
        self,
        argv: Sequence[str],
        *,
        cwd: Optional[os.PathLike | str] = None,
        env: Optional[Mapping[str, str]] = None,
        spawner: Callable[..., Process] = spawn,
    ) -> None:
        self.argv = list(argv)
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = env
        self._spawn = spawner
        self.process: Optional[Process] = None
        self._in: Optional[SessionInput] = None
        self._out: Optional[SessionOutput] = None
        self._cleanup: Optional[Cleanup] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process is not None else None

    def start(self) -> Cleanup:
        """Spawn the debugger and open its streams.

        Raises:
            OSError: The process could not be spawned; the session stays
                unstarted.
            SessionStateError: The session was started before. Sessions are
                not restartable, build a new one instead.
        """
        if self.process is not None:
            raise SessionStateError("Session was already started")

        process = self._spawn(self.argv, cwd=self.cwd, env=self.env)
        logger.debug("Started pid=%d argv=%s cwd=%s", process.pid, self.argv, self.cwd)

        self.process = process
        self._out = SessionOutput(
            process.stdout, name=f"session-output-{process.pid}"
        )
        self._in = SessionInput(process.stdin)
        self._cleanup = Cleanup(process, self._in, self._out)
        return self._cleanup

    def run(self) -> Self:
        """Start the session and have it cleaned up when the interpreter exits."""
        atexit.register(self.start())
        return self

    def _unregister(self) -> None:
        if self._cleanup is not None:
            atexit.unregister(self._cleanup)

    def _close_streams(self) -> None:
        if self._in is not None:
            self._in.close()
        if self._out is not None:
            self._out.close()

    def _release_output(self) -> None:
        # the child is gone, so the reader sees end of stream and closes the pipe
        if self._out is not None and not self._out.join(RELEASE_TIMEOUT):
            logger.debug("Output of pid=%d is still held open", self.pid)

    def quit(self) -> None:
        """Close the streams, then terminate the process and wait for it."""
        self._close_streams()

        if self.process is not None:
            if self.process.is_running():
                try:
                    self.process.terminate()
                except ProcessLookupError:
                    logger.debug("pid=%d exited before terminate", self.process.pid)
            self.process.wait()
            logger.debug("pid=%d exited rc=%s", self.process.pid, self.returncode)
            self._release_output()

        self._unregister()

    def force_quit(self) -> None:
        """Close the streams, then kill the process by its pid."""
        self._close_streams()

        if self.process is not None:
            self.process.kill()
            logger.debug("pid=%d killed rc=%s", self.process.pid, self.returncode)
            self._release_output()

        self._unregister()

    def send(self, *commands: str) -> Self:
        """Send commands, one per line. Read the output to let them run.

        Raises:
            SessionStateError: The session was never started or was quit.
        """
        if self._in is None or self._in.closed:
            raise SessionStateError("Input is closed")

        self._in.send_all(commands)
        return self

    def read(self) -> str:
        """Read the next output line, blocking until there is one.

        Returns an empty string when there is no output to wait for: the
        session is not started or quit, the output ended, or it failed.
        """
        if self._out is None:
            return ""

        try:
            return self._out.read()
        except OSError as e:
            logger.debug("Read failed: %s", e)
            return ""

    def read_all(self) -> list[str]:
        """Read every output line available right now, without blocking.

        Raises:
            OSError: The output pipe broke.
        """
        if self._out is None:
            return []

        return self._out.read_all()

    def is_ready(self) -> bool:
        """True if ``read`` is guaranteed not to block."""
        return self._out is not None and self._out.is_ready()

    def wait_for(self, timeout: Optional[float] = None) -> Optional[int]:
        if self.process is None:
            return None

        return self.process.wait(timeout)

    def is_running(self) -> bool:
        return self.process is not None and self.process.is_running()

    def at_eof(self) -> bool:
        """True once the output ended or was closed and every line was read."""
        return self._out is None or self._out.at_eof

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.quit()


class SessionBuilder:
    def __init__(self) -> None:
        self._program = DEFAULT_PROGRAM
        self._argument_file: Optional[Path] = None
        self._working_directory: Optional[Path] = None
        self._class_path: Optional[list[Path]] = None
        self._src_path: Optional[list[Path]] = None
        self._class_signature: Optional[str] = None
        self._class_args: Optional[str] = None
        self._env: Optional[Mapping[str, str]] = None
        self._argfile_threshold = ARGFILE_THRESHOLD
        self._argfile_directory: Optional[Path] = None

    @classmethod
    def from_config(cls, config: SessionConfig) -> Self:
        builder = (
            cls()
            .program(config.program)
            .working_directory(config.working_directory)
            .class_path(config.class_path)
            .src_path(config.src_path)
            .class_signature(config.class_signature)
            .class_args(config.class_args)
            .argument_file(config.argument_file)
            .argfile_threshold(config.argfile_threshold)
            .env(config.resolve_env())
        )
        return builder

    def program(self, program: str) -> Self:
        self._program = program
        return self

    def argument_file(self, argument_file: Optional[os.PathLike | str]) -> Self:
        self._argument_file = Path(argument_file) if argument_file is not None else None
        return self

    def working_directory(self, working_directory: Optional[os.PathLike | str]) -> Self:
        self._working_directory = (
            Path(working_directory) if working_directory is not None else None
        )
        return self

    def class_path(self, class_path: Optional[Iterable[os.PathLike | str]]) -> Self:
        self._class_path = [Path(p) for p in class_path] if class_path is not None else None
        return self

    def src_path(self, src_path: Optional[Iterable[os.PathLike | str]]) -> Self:
        self._src_path = [Path(p) for p in src_path] if src_path is not None else None
        return self

    def class_signature(self, class_signature: Optional[str]) -> Self:
        self._class_signature = class_signature
        return self

    def class_args(self, class_args: Optional[str]) -> Self:
        self._class_args = class_args
        return self

    def env(self, env: Optional[Mapping[str, str]]) -> Self:
        self._env = env
        return self

    def argfile_threshold(self, threshold: int) -> Self:
        self._argfile_threshold = threshold
        return self

    def argfile_directory(self, directory: Optional[os.PathLike | str]) -> Self:
        self._argfile_directory = Path(directory) if directory is not None else None
        return self

    def _encoder(self) -> ArgumentEncoder:
        directory = self._argfile_directory or Dirs().argfile_dir
        return ArgumentEncoder(
            self._working_directory,
            threshold=self._argfile_threshold,
            argfile=ArgumentFile(directory, ARGFILE_PREFIX),
        )

    def build(self) -> Session:
        """Create an unstarted session from the configured fields.

        Missing class and source paths count as empty. The class path is
        moved into an argument file when it is too long for the command
        line, or taken from the argument file given to ``argument_file``.

        Raises:
            SessionStateError: A path could not be encoded, or the program
                is not a valid command line.
        """
        class_path = self._class_path if self._class_path is not None else []
        src_path = self._src_path if self._src_path is not None else []
        encoder = self._encoder()

        if self._argument_file is not None:
            encoded_class_path = EncodedArguments.from_file(self._argument_file)
        else:
            encoded_class_path = encoder.encode_class_path(class_path)

        argv = build_argv(
            self._program,
            src_path=encoder.encode_paths(src_path),
            class_path=encoded_class_path.value,
            class_signature=self._class_signature or "",
            class_args=self._class_args or "",
        )
        return Session(argv, cwd=self._working_directory, env=self._env)
