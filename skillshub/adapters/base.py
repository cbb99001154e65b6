"""Tool adapter contract.

A tool adapter describes where one consumer tool expects skills to live and
how to tell whether that tool is installed.  Adapters are plain data: the sync
engines read them, nothing writes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath


@dataclass(frozen=True)
class ToolAdapter:
    key: str
    display_name: str
    relative_skills_dir: str  # relative to the user's home directory
    relative_detect_dir: str  # existence of this dir means "installed"

    def skills_dir(self, home: Path | None = None) -> Path:
        return (home or Path.home()) / self.relative_skills_dir

    def is_installed(self, home: Path | None = None) -> bool:
        return ((home or Path.home()) / self.relative_detect_dir).is_dir()

    def remote_skills_dir(self, remote_home: str) -> str:
        return str(PurePosixPath(remote_home) / self.relative_skills_dir)
