"""Remote sync engine tests over a local fake SSH connection."""

import os
from pathlib import Path
from unittest.mock import patch

import asyncssh
import pytest

from skillshub.errors import (
    AuthenticationFailed,
    ConnectionFailed,
    InvalidInput,
    RemoteCommandFailed,
    RemoteSyncFailed,
    UnknownTool,
)
from skillshub.services import remote_sync
from skillshub.services.remote_sync import ConnectionProfile, RemoteSession

PROFILE = ConnectionProfile(host="box.example", port=2222, username="dev", key_path="~/.ssh/id_test")


@pytest.mark.asyncio
async def test_session_closes_connection(fake_ssh):
    conn, connect = fake_ssh
    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        assert isinstance(session, RemoteSession)
        assert await session.exec("echo ok") == "ok\n"
    assert conn.closed is True
    options = connect.calls[0]
    assert options["host"] == "box.example"
    assert options["port"] == 2222
    assert options["known_hosts"] is None
    assert options["client_keys"] == [str(Path("~/.ssh/id_test").expanduser())]


@pytest.mark.asyncio
async def test_session_closes_on_error(fake_ssh):
    conn, connect = fake_ssh
    with pytest.raises(RemoteCommandFailed) as exc_info:
        async with remote_sync.open_session(PROFILE, connect=connect) as session:
            await session.exec("echo boom >&2; exit 3")
    assert exc_info.value.exit_status == 3
    assert "boom" in exc_info.value.stderr
    assert conn.closed is True


@pytest.mark.asyncio
async def test_connect_errors_are_mapped():
    async def denied(host, **options):
        raise asyncssh.PermissionDenied("bad key")

    async def refused(host, **options):
        raise ConnectionRefusedError("refused")

    with pytest.raises(AuthenticationFailed) as auth_info:
        async with remote_sync.open_session(PROFILE, connect=denied):
            pass
    assert auth_info.value.username == "dev"

    with pytest.raises(ConnectionFailed) as conn_info:
        async with remote_sync.open_session(PROFILE, connect=refused):
            pass
    assert conn_info.value.port == 2222
    assert isinstance(conn_info.value.__cause__, ConnectionRefusedError)


def test_resolve_key_path_defaults(tmp_path: Path):
    ssh_dir = tmp_path / ".ssh"
    ssh_dir.mkdir()
    with pytest.raises(InvalidInput):
        remote_sync.resolve_key_path(None, home=tmp_path)
    (ssh_dir / "id_rsa").write_text("key")
    assert remote_sync.resolve_key_path(None, home=tmp_path) == str(ssh_dir / "id_rsa")
    (ssh_dir / "id_ed25519").write_text("key")
    assert remote_sync.resolve_key_path(None, home=tmp_path) == str(ssh_dir / "id_ed25519")


@pytest.mark.asyncio
async def test_home_and_upload(fake_ssh, remote_home: Path, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    local = skill_factory(tmp_path / "local" / "demo", "demo")
    (local / "nested").mkdir()
    (local / "nested" / "a.txt").write_text("a")
    (local / ".git").mkdir()
    (local / ".git" / "HEAD").write_text("ref")

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        assert await session.home() == str(remote_home)
        staged = await remote_sync.upload_skill(session, "demo", local)

    assert staged == str(remote_home / ".skillshub" / "demo")
    assert (Path(staged) / "nested" / "a.txt").read_text() == "a"
    assert not (Path(staged) / ".git").exists()


@pytest.mark.asyncio
async def test_upload_into_existing_dirs(fake_ssh, remote_home: Path, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    local = skill_factory(tmp_path / "local" / "demo", "demo")
    (remote_home / ".skillshub" / "demo").mkdir(parents=True)

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        await remote_sync.upload_skill(session, "demo", local)
        await remote_sync.upload_skill(session, "demo", local)

    assert (remote_home / ".skillshub" / "demo" / "SKILL.md").exists()


@pytest.mark.asyncio
async def test_remote_symlink_is_idempotent(fake_ssh, remote_home: Path):
    conn, connect = fake_ssh
    source = remote_home / ".skillshub" / "demo"
    source.mkdir(parents=True)
    target = remote_home / ".claude" / "skills" / "demo"

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        await session.create_remote_symlink(str(source), str(target))
        await session.create_remote_symlink(str(source), str(target))

    assert target.is_symlink()
    assert os.readlink(target) == str(source)
    # ln -sfn replaces the link instead of nesting a new one inside the old target
    assert not (source / "demo").exists()


@pytest.mark.asyncio
async def test_detect_tools_single_round_trip(fake_ssh, remote_home: Path):
    conn, connect = fake_ssh
    (remote_home / ".claude").mkdir()
    (remote_home / ".kimi").mkdir()

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        before = len(conn.commands)
        tools = await session.detect_remote_tools()
        assert len(conn.commands) == before + 1

    installed = {t.key for t in tools if t.installed}
    assert installed == {"claude_code", "kimi_cli"}
    assert len(tools) == 10


@pytest.mark.asyncio
async def test_batch_skips_missing_skill(fake_ssh, remote_home: Path, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    one = skill_factory(tmp_path / "local" / "one", "one")
    three = skill_factory(tmp_path / "local" / "three", "three")
    skills = [("one", one), ("two", tmp_path / "local" / "two"), ("three", three)]

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        result = await remote_sync.sync_skills_to_remote(session, skills, ["claude_code"])

    assert set(result.synced) == {"one", "three"}
    assert result.skipped == ["two"]
    assert result.errors == []
    link = remote_home / ".claude" / "skills" / "three"
    assert link.is_symlink()
    assert os.readlink(link) == str(remote_home / ".skillshub" / "three")


@pytest.mark.asyncio
async def test_batch_partial_failure_returns_subset(fake_ssh, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    conn.fail_uploads.add("/.skillshub/bad/")
    good = skill_factory(tmp_path / "local" / "good", "good")
    bad = skill_factory(tmp_path / "local" / "bad", "bad")

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        result = await remote_sync.sync_skills_to_remote(session, [("bad", bad), ("good", good)], [])

    assert result.synced == ["good"]
    assert len(result.errors) == 1 and result.errors[0].startswith("bad:")


@pytest.mark.asyncio
async def test_batch_total_failure_raises(fake_ssh, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    conn.fail_uploads.add("/.skillshub/")
    bad = skill_factory(tmp_path / "local" / "bad", "bad")

    with pytest.raises(RemoteSyncFailed) as exc_info:
        async with remote_sync.open_session(PROFILE, connect=connect) as session:
            await remote_sync.sync_skills_to_remote(session, [("bad", bad)], ["codex"])
    assert len(exc_info.value.errors) == 1
    assert conn.closed is True


@pytest.mark.asyncio
async def test_sync_to_unknown_remote_tool(fake_ssh, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    local = skill_factory(tmp_path / "local" / "demo", "demo")
    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        with pytest.raises(UnknownTool):
            await remote_sync.sync_skill_to_remote_tool(session, "demo", local, "nope")


@pytest.mark.asyncio
async def test_browse_resolves_home(fake_ssh, remote_home: Path):
    conn, connect = fake_ssh
    (remote_home / "projects" / "b").mkdir(parents=True)
    (remote_home / "projects" / "a").mkdir()
    (remote_home / "projects" / "file.txt").write_text("x")

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        path, dirs = await session.browse("~/projects")
        missing_path, missing = await session.browse("/definitely/not/here")

    assert path == str(remote_home / "projects")
    assert dirs == ["a", "b"]
    assert missing_path == "/definitely/not/here"
    assert missing == []


@pytest.mark.asyncio
async def test_connection_check_uses_patched_asyncssh(fake_ssh):
    conn, connect = fake_ssh
    with patch("skillshub.services.remote_sync.asyncssh.connect", connect):
        assert await remote_sync.test_connection(PROFILE) == "ok"
    assert conn.closed is True


@pytest.mark.asyncio
async def test_reupload_drops_files_deleted_locally(fake_ssh, remote_home: Path, tmp_path: Path, skill_factory):
    conn, connect = fake_ssh
    local = skill_factory(tmp_path / "local" / "demo", "demo")
    (local / "old.md").write_text("old")

    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        staged = await remote_sync.upload_skill(session, "demo", local)
        assert (Path(staged) / "old.md").exists()
        (local / "old.md").unlink()
        await remote_sync.upload_skill(session, "demo", local)

    assert not (Path(staged) / "old.md").exists()
    assert (Path(staged) / "SKILL.md").exists()


@pytest.mark.asyncio
async def test_resolve_path_expands_only_leading_tilde(fake_ssh, remote_home: Path):
    conn, connect = fake_ssh
    async with remote_sync.open_session(PROFILE, connect=connect) as session:
        assert await session.resolve_path("~") == str(remote_home)
        assert await session.resolve_path("~/skills") == f"{remote_home}/skills"
        assert await session.resolve_path("/srv/~x") == "/srv/~x"
