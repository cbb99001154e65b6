"""Markdown helpers — parsing SKILL.md frontmatter."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

SKILL_MANIFEST = "SKILL.md"


def parse_skill_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from a SKILL.md file.

    Returns (metadata_dict, body_after_frontmatter).
    """
    match = re.match(r"^---\s*\n(.*?)\n---\s*\n?(.*)", content, re.DOTALL)
    if not match:
        return {}, content

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        meta = {}
    if not isinstance(meta, dict):
        meta = {}

    return meta, match.group(2)


def read_skill_manifest(skill_dir: Path) -> dict[str, Any] | None:
    """Frontmatter of ``skill_dir/SKILL.md``, or None when there is no manifest."""
    manifest = skill_dir / SKILL_MANIFEST
    if not manifest.is_file():
        return None
    meta, _ = parse_skill_frontmatter(manifest.read_text(encoding="utf-8", errors="replace"))
    return meta
