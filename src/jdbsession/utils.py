from __future__ import annotations

from pathlib import Path
from typing import Any

import platformdirs

dirs = platformdirs.PlatformDirs("jdbsession")


class Dirs:
    def __init__(self, subdir: Path | str = "", *, _dirs: Any = dirs) -> None:
        self.subdir = subdir
        self._dirs = _dirs

    def __truediv__(self, subdir: Path | str) -> Dirs:
        return Dirs(Path(self.subdir) / subdir, _dirs=self._dirs)

    @property
    def cache_dir(self) -> Path:
        return self._dirs.user_cache_path / self.subdir

    @property
    def argfile_dir(self) -> Path:
        return (self / "argfiles").cache_dir
