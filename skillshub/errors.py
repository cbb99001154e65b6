"""Structured error taxonomy for the distribution core.

Every failure the core surfaces is a ``SkillsHubError`` subclass with a stable
``kind`` string and the context a caller needs to decide what to do next
(retry with ``overwrite``, pick a subpath, fix credentials ...).  Turning an
error into user-facing text is done by :func:`format_error`, which only reads
these structured values and the ``__cause__`` chain.
"""

from __future__ import annotations

import re
from typing import Any


class SkillsHubError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def context(self) -> dict[str, Any]:
        """Machine-readable details shipped alongside the message."""
        return {}


class NotFound(SkillsHubError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id

    def context(self) -> dict[str, Any]:
        return {"entity": self.entity, "id": self.entity_id}


class InvalidInput(SkillsHubError):
    kind = "invalid_input"
    status_code = 422


class SourceUnavailable(SkillsHubError):
    kind = "source_unavailable"
    status_code = 502

    def __init__(self, source_ref: str, message: str) -> None:
        super().__init__(message)
        self.source_ref = source_ref

    def context(self) -> dict[str, Any]:
        return {"source_ref": self.source_ref}


class AmbiguousSelection(SkillsHubError):
    """The source root holds several skills; re-invoke with a subpath."""

    kind = "multi_skills"
    status_code = 422

    def __init__(self, source_ref: str, candidates: list[Any]) -> None:
        super().__init__(f"{len(candidates)} skills found in {source_ref}; choose one")
        self.source_ref = source_ref
        self.candidates = candidates

    def context(self) -> dict[str, Any]:
        return {
            "source_ref": self.source_ref,
            "candidates": [getattr(c, "subpath", c) for c in self.candidates],
        }


class DestinationConflict(SkillsHubError):
    kind = "destination_conflict"
    status_code = 409

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(message or f"skill already exists: {path}")
        self.path = path

    def context(self) -> dict[str, Any]:
        return {"path": self.path}


class TargetExists(DestinationConflict):
    kind = "target_exists"

    def __init__(self, path: str) -> None:
        super().__init__(path, f"target already exists: {path}")


class ToolNotInstalled(SkillsHubError):
    kind = "tool_not_installed"
    status_code = 409

    def __init__(self, tool: str) -> None:
        super().__init__(f"tool is not installed: {tool}")
        self.tool = tool

    def context(self) -> dict[str, Any]:
        return {"tool": self.tool}


class UnknownTool(SkillsHubError):
    kind = "unknown_tool"
    status_code = 404

    def __init__(self, tool: str) -> None:
        super().__init__(f"unknown tool: {tool}")
        self.tool = tool

    def context(self) -> dict[str, Any]:
        return {"tool": self.tool}


class SyncFailed(SkillsHubError):
    kind = "sync_failed"

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path

    def context(self) -> dict[str, Any]:
        return {"path": self.path}


class StorageInconsistency(SkillsHubError):
    kind = "storage_inconsistency"
    status_code = 409

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(message or f"record and filesystem disagree: {path}")
        self.path = path

    def context(self) -> dict[str, Any]:
        return {"path": self.path}


class ConnectionFailed(SkillsHubError):
    kind = "connection_failed"
    status_code = 502

    def __init__(self, host: str, port: int, message: str | None = None) -> None:
        super().__init__(message or f"could not connect to {host}:{port}")
        self.host = host
        self.port = port

    def context(self) -> dict[str, Any]:
        return {"host": self.host, "port": self.port}


class AuthenticationFailed(SkillsHubError):
    kind = "authentication_failed"
    status_code = 502

    def __init__(self, host: str, username: str, message: str | None = None) -> None:
        super().__init__(message or f"SSH authentication failed for user '{username}' on {host}")
        self.host = host
        self.username = username

    def context(self) -> dict[str, Any]:
        return {"host": self.host, "username": self.username}


class RemoteCommandFailed(SkillsHubError):
    kind = "remote_command_failed"
    status_code = 502

    def __init__(self, command: str, exit_status: int | None, stderr: str) -> None:
        super().__init__(
            f"remote command '{command}' exited with code {exit_status}: {stderr.strip()}"
        )
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr

    def context(self) -> dict[str, Any]:
        return {"command": self.command, "exit_status": self.exit_status, "stderr": self.stderr}


class RemoteSyncFailed(SkillsHubError):
    kind = "remote_sync_failed"
    status_code = 502

    def __init__(self, errors: list[str]) -> None:
        super().__init__("all skills failed to sync:\n" + "\n".join(errors))
        self.errors = errors

    def context(self) -> dict[str, Any]:
        return {"errors": self.errors}


class PartialBatchFailure(SkillsHubError):
    """Some items of a batch succeeded, some did not. Not fatal."""

    kind = "partial_batch_failure"

    def __init__(self, message: str, succeeded: list[str], failed: list[str]) -> None:
        super().__init__(message)
        self.succeeded = succeeded
        self.failed = failed

    def context(self) -> dict[str, Any]:
        return {"succeeded": self.succeeded, "failed": self.failed}


# ── Presentation ─────────────────────────────────────────────────────

# Scratch directories created for clones/downloads; the user cares about the
# cause, not where we happened to stage it.
_TRANSIENT_PATH = re.compile(
    r"""["']?[^\s"']*skillshub-(?:git|stage|download)-[A-Za-z0-9_]{6,}[^\s"']*["']?"""
)


def redact_transient_paths(text: str) -> str:
    return _TRANSIENT_PATH.sub("<temp>", text)


def iter_causes(exc: BaseException):
    """Yield ``exc`` followed by every distinct explicit/implicit cause."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def format_error(exc: BaseException) -> str:
    """Render ``exc`` with its root cause chain, one line per distinct cause."""
    lines: list[str] = []
    for item in iter_causes(exc):
        text = redact_transient_paths(str(item).strip()) or type(item).__name__
        if text not in lines:
            lines.append(text)
    return "\n".join(lines)


def error_payload(exc: SkillsHubError) -> dict[str, Any]:
    return {"kind": exc.kind, "message": format_error(exc), **exc.context()}
