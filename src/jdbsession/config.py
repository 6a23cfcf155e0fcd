import os
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import dotenv

from .arguments import ARGFILE_THRESHOLD
from .compat import tomllib
from .typecast import TypeCastError, typecast


@dataclass(kw_only=True)
class SessionConfig:
    program: str = "jdb"
    working_directory: Optional[Path] = None
    class_path: list[Path] = field(default_factory=list)
    src_path: list[Path] = field(default_factory=list)
    class_signature: str = ""
    class_args: str = ""
    argument_file: Optional[Path] = None
    argfile_threshold: int = ARGFILE_THRESHOLD
    env: dict[str, Optional[str]] = field(default_factory=dict)
    env_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.argfile_threshold < 0:
            raise TypeCastError("argfile_threshold", "must not be negative")

    def read_env_file(self) -> dict[str, Optional[str]]:
        env = {}

        if self.env_file:
            env_file = Path(self.working_directory or ".") / self.env_file
            env.update(dotenv.dotenv_values(env_file, interpolate=False))

        env.update(self.env)

        return OrderedDict(dotenv.main.resolve_variables(env.items(), override=True))

    def resolve_env(self) -> Optional[dict[str, str]]:
        """Environment for the debugger, or None to inherit ours unchanged.

        Variables listed without a value in the env file are removed from
        the inherited environment.
        """
        if not self.env and not self.env_file:
            return None

        env = dict(os.environ)
        for name, value in self.read_env_file().items():
            if value is None:
                env.pop(name, None)
            else:
                env[name] = value
        return env


def _resolve(base: Path, path: Optional[Path]) -> Optional[Path]:
    if path is None or path.is_absolute():
        return path
    return (base / path).resolve()


def load_config(path: Path) -> SessionConfig:
    """Load a session config from a TOML file.

    A relative ``working_directory`` or ``argument_file`` is taken relative
    to the file's directory. Class and source paths are left alone: relative
    entries are already relative to the working directory.
    """
    data = tomllib.loads(path.read_text())
    config = typecast(SessionConfig, data)

    base = path.parent.resolve()
    config.working_directory = _resolve(base, config.working_directory)
    config.argument_file = _resolve(base, config.argument_file)
    return config
