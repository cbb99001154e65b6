"""Built-in tool adapter registry."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from skillshub.adapters.base import ToolAdapter

DEFAULT_TOOL_ADAPTERS: tuple[ToolAdapter, ...] = (
    ToolAdapter("claude_code", "Claude Code", ".claude/skills", ".claude"),
    ToolAdapter("codex", "Codex", ".codex/skills", ".codex"),
    ToolAdapter("cursor", "Cursor", ".cursor/skills", ".cursor"),
    ToolAdapter("gemini_cli", "Gemini CLI", ".gemini/skills", ".gemini"),
    ToolAdapter("antigravity", "Antigravity", ".gemini/antigravity/skills", ".gemini/antigravity"),
    ToolAdapter("opencode", "OpenCode", ".config/opencode/skill", ".config/opencode"),
    ToolAdapter("windsurf", "Windsurf", ".codeium/windsurf/skills", ".codeium/windsurf"),
    ToolAdapter("qwen_code", "Qwen Code", ".qwen/skills", ".qwen"),
    # Amp and Kimi CLI both read the shared agents directory
    ToolAdapter("amp", "Amp", ".config/agents/skills", ".config/amp"),
    ToolAdapter("kimi_cli", "Kimi CLI", ".config/agents/skills", ".kimi"),
)


def default_tool_adapters() -> list[ToolAdapter]:
    return list(DEFAULT_TOOL_ADAPTERS)


def adapter_by_key(
    key: str, adapters: Sequence[ToolAdapter] | None = None
) -> ToolAdapter | None:
    for adapter in adapters if adapters is not None else DEFAULT_TOOL_ADAPTERS:
        if adapter.key == key:
            return adapter
    return None


def group_for(
    adapter: ToolAdapter, adapters: Iterable[ToolAdapter] | None = None
) -> list[ToolAdapter]:
    """Every adapter (``adapter`` included) that writes to the same skills dir.

    Any code path that fans a write or a removal out to tools must go through
    this so the records of all group members move together.
    """
    pool = list(adapters) if adapters is not None else list(DEFAULT_TOOL_ADAPTERS)
    group = [a for a in pool if a.relative_skills_dir == adapter.relative_skills_dir]
    if adapter not in group:
        group.insert(0, adapter)
    return group
