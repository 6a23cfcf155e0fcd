"""Command-line encoding of path lists.

Paths are made relative to the session's working directory, joined with
``os.pathsep`` and have their whitespace escaped as ``%20``. A class path
whose inline form would get too long for the command line is written to an
argument file instead and passed as ``@<file>``.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .utils import Dirs

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

__all__ = [
    "ARGFILE_THRESHOLD",
    "ArgumentEncoder",
    "ArgumentFile",
    "EncodedArguments",
    "encode_paths",
    "relativize_paths",
]

logger = logging.getLogger(__name__)

# cmd.exe caps a whole command line at 8191 characters
ARGFILE_THRESHOLD = 4096
ARGFILE_PREFIX = "argfile-jdb"

_WHITESPACE = re.compile(r"\s")


def relativize_paths(
    paths: Iterable[os.PathLike | str], working_directory: Optional[os.PathLike | str]
) -> list[Path]:
    relativized = []
    for path in map(Path, paths):
        if path.is_absolute() and working_directory is not None:
            try:
                path = Path(os.path.relpath(path, working_directory))
            except ValueError:
                # no relative route between drives on Windows
                pass
        relativized.append(path)
    return relativized


def escape_whitespace(arg: str) -> str:
    return _WHITESPACE.sub("%20", arg)


def encode_paths(
    paths: Iterable[os.PathLike | str], working_directory: Optional[os.PathLike | str]
) -> str:
    joined = os.pathsep.join(str(p) for p in relativize_paths(paths, working_directory))
    return escape_whitespace(joined)


class ArgumentFile:
    """Writes path lists to uniquely named files, one path per line."""

    def __init__(self, directory: os.PathLike | str, prefix: str) -> None:
        self.directory = Path(directory)
        self.prefix = prefix

    def create(self, paths: Iterable[os.PathLike | str]) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=f"{self.prefix}-", dir=self.directory)
        with open(fd, "w", encoding="utf-8") as f:
            f.writelines(f"{os.fspath(p)}\n" for p in paths)
        return Path(name)

    def try_create(self, paths: Iterable[os.PathLike | str]) -> Optional[Path]:
        try:
            return self.create(paths)
        except OSError as e:
            logger.debug("Unable to write argument file in %s: %s", self.directory, e)
            return None


@dataclass(frozen=True)
class EncodedArguments:
    value: str
    argument_file: Optional[Path] = None

    @classmethod
    def inline(cls, value: str) -> EncodedArguments:
        return cls(value)

    @classmethod
    def from_file(cls, path: os.PathLike | str) -> EncodedArguments:
        return cls(f"@{os.fspath(path)}", Path(path))

    @property
    def is_file(self) -> bool:
        return self.argument_file is not None

    def __str__(self) -> str:
        return self.value


@dataclass
class ArgumentEncoder:
    working_directory: Optional[Path] = None
    threshold: int = ARGFILE_THRESHOLD
    argfile: ArgumentFile = field(
        default_factory=lambda: ArgumentFile(Dirs().argfile_dir, ARGFILE_PREFIX)
    )

    def encode_paths(self, paths: Sequence[os.PathLike | str]) -> str:
        return encode_paths(paths, self.working_directory)

    def encode_class_path(self, paths: Sequence[os.PathLike | str]) -> EncodedArguments:
        inline = self.encode_paths(paths)
        if len(inline) <= self.threshold:
            return EncodedArguments.inline(inline)

        argument_file = self.argfile.try_create(paths)
        if argument_file is None:
            logger.debug("Falling back to an inline class path (%d chars)", len(inline))
            return EncodedArguments.inline(inline)

        logger.debug("Class path written to %s", argument_file)
        return EncodedArguments.from_file(argument_file)
