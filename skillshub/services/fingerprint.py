"""Content fingerprint over a skill directory."""

from __future__ import annotations

import hashlib
from pathlib import Path

IGNORED_DIR_NAMES = frozenset({".git"})


def compute_content_hash(skill_dir: Path) -> str:
    """Stable sha256 over relative paths and file bytes, ordered by path.

    Symlinks inside the tree are hashed by their target text, not followed,
    so a link loop cannot hang the walk.
    """
    digest = hashlib.sha256()
    root = skill_dir.resolve()

    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if IGNORED_DIR_NAMES.intersection(relative.parts):
            continue
        if path.is_symlink():
            payload = str(path.readlink()).encode("utf-8")
        elif path.is_file():
            payload = path.read_bytes()
        else:
            continue
        digest.update(relative.as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(payload)
        digest.update(b"\0")

    return f"sha256:{digest.hexdigest()}"
