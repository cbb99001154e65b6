"""Installer tests — install, update propagation, update checks, deletion."""

import shutil
import subprocess
from pathlib import Path

import pytest

from skillshub.config import settings
from skillshub.errors import (
    AmbiguousSelection,
    DestinationConflict,
    NotFound,
    PartialBatchFailure,
    SourceUnavailable,
)
from skillshub.schemas.skill import UpdateState
from skillshub.schemas.sync import SyncMode
from skillshub.services import installer, skill_store, sync_service
from skillshub.services.fingerprint import compute_content_hash


@pytest.fixture
def source(tmp_path: Path, skill_factory) -> Path:
    src = skill_factory(tmp_path / "src" / "demo", "demo")
    (src / "scripts").mkdir()
    (src / "scripts" / "run.sh").write_text("echo hi\n")
    return src


@pytest.mark.asyncio
async def test_install_local(db, source: Path):
    skill = await installer.install(db, source_type="local", source_ref=str(source))

    central = Path(skill.central_path)
    assert skill.name == "demo"
    assert central == settings.central_repo_dir / "demo"
    assert (central / "scripts" / "run.sh").read_text() == "echo hi\n"
    assert skill.content_hash == compute_content_hash(source)
    assert skill.source_revision == skill.content_hash
    # the source itself is left untouched
    assert (source / "SKILL.md").exists()
    # no staging directories are left behind
    assert [p.name for p in settings.central_repo_dir.iterdir()] == ["demo"]


@pytest.mark.asyncio
async def test_install_explicit_name_and_dedup_dir(db, source: Path):
    (settings.central_repo_dir / "renamed").mkdir(parents=True)

    skill = await installer.install(db, source_type="local", source_ref=str(source), name="renamed")

    assert skill.name == "renamed"
    assert Path(skill.central_path).name == "renamed-2"


@pytest.mark.asyncio
async def test_install_missing_source(db, tmp_path: Path):
    with pytest.raises(SourceUnavailable):
        await installer.install(db, source_type="local", source_ref=str(tmp_path / "nope"))


@pytest.mark.asyncio
async def test_install_multi_skill_source_needs_subpath(db, tmp_path: Path, skill_factory):
    repo = tmp_path / "multi"
    skill_factory(repo / "skills" / "alpha", "alpha")
    skill_factory(repo / "skills" / "beta", "beta")

    with pytest.raises(AmbiguousSelection) as exc_info:
        await installer.install(db, source_type="local", source_ref=str(repo))
    assert sorted(c.subpath for c in exc_info.value.candidates) == ["skills/alpha", "skills/beta"]

    skill = await installer.install(
        db, source_type="local", source_ref=str(repo), subpath="skills/beta"
    )
    assert skill.name == "beta"
    assert skill.source_subpath == "skills/beta"
    assert await skill_store.get_skill_by_name(db, "alpha") is None


@pytest.mark.asyncio
async def test_install_same_name_conflicts_unless_overwrite(db, source: Path):
    first = await installer.install(db, source_type="local", source_ref=str(source))

    with pytest.raises(DestinationConflict):
        await installer.install(db, source_type="local", source_ref=str(source))

    (source / "SKILL.md").write_text("---\nname: demo\n---\n\nNew body.\n")
    second = await installer.install(db, source_type="local", source_ref=str(source), overwrite=True)

    assert second.id == first.id
    assert second.central_path == first.central_path
    assert "New body." in (Path(second.central_path) / "SKILL.md").read_text()


@pytest.mark.asyncio
async def test_update_unchanged_is_noop(db, source: Path):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    updated_at = skill.updated_at

    report = await installer.update(db, skill.id)

    assert report.changed is False
    assert report.repushed == []
    refreshed = await skill_store.get_skill(db, skill.id)
    assert refreshed.updated_at == updated_at
    assert refreshed.content_hash == skill.content_hash


@pytest.mark.asyncio
async def test_update_repushes_copy_targets_only(db, source: Path, home: Path):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    (home / ".claude").mkdir()
    (home / ".codex").mkdir()
    copied = await sync_service.sync_skill_to_tool(
        db, skill.id, "claude_code", mode=SyncMode.COPY, home=home
    )
    linked = await sync_service.sync_skill_to_tool(db, skill.id, "codex", home=home)
    old_hash = skill.content_hash

    (source / "SKILL.md").write_text("---\nname: demo\n---\n\nVersion two.\n")
    report = await installer.update(db, skill.id)

    assert report.changed is True
    assert report.content_hash != old_hash
    assert report.repushed == ["claude_code"]
    assert report.failed == []
    assert "Version two." in (Path(copied.target_path) / "SKILL.md").read_text()
    # the symlink target sees the new central copy without a re-push
    assert Path(linked.target_path).is_symlink()
    assert "Version two." in (Path(linked.target_path) / "SKILL.md").read_text()

    refreshed = await skill_store.get_skill(db, skill.id)
    assert refreshed.content_hash == report.content_hash


@pytest.mark.asyncio
async def test_update_marks_failed_copy_target(db, source: Path, tmp_path: Path, monkeypatch):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    await skill_store.upsert_skill_target(
        db,
        skill_id=skill.id,
        tool="codex",
        target_path=str(tmp_path / "copy" / "demo"),
        mode="copy",
    )

    def refuse(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("skillshub.services.sync_engine.sync_dir", refuse)
    (source / "extra.md").write_text("more\n")
    report = await installer.update(db, skill.id)

    assert report.changed is True
    assert [f.tool for f in report.failed] == ["codex"]
    record = await skill_store.get_skill_target(db, skill.id, "codex")
    assert record.status == "error"
    assert "disk full" in record.last_error


@pytest.mark.asyncio
async def test_check_updates_never_mutates(db, source: Path, tmp_path: Path):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    gone = tmp_path / "gone"
    gone_src = gone / "other"
    gone_src.mkdir(parents=True)
    (gone_src / "SKILL.md").write_text("---\nname: other\n---\n")
    other = await installer.install(db, source_type="local", source_ref=str(gone_src))

    statuses = {s.name: s for s in await installer.check_updates(db)}
    assert statuses["demo"].status == UpdateState.UP_TO_DATE
    assert statuses["demo"].has_update is False

    (source / "SKILL.md").write_text("---\nname: demo\n---\n\nchanged\n")
    (gone_src / "SKILL.md").unlink()
    gone_src.rmdir()
    statuses = {s.name: s for s in await installer.check_updates(db)}

    assert statuses["demo"].status == UpdateState.UPDATE_AVAILABLE
    assert statuses["demo"].has_update is True
    assert statuses["other"].status == UpdateState.UNKNOWN
    assert statuses["other"].error
    refreshed = await skill_store.get_skill(db, skill.id)
    assert refreshed.content_hash == skill.content_hash
    assert Path(other.central_path).is_dir()


@pytest.mark.asyncio
async def test_list_candidates(db, tmp_path: Path, skill_factory):
    repo = tmp_path / "multi"
    skill_factory(repo / "a", "alpha", description="First")
    skill_factory(repo / "nested" / "b", "beta")
    (repo / "node_modules" / "x").mkdir(parents=True)
    (repo / "node_modules" / "x" / "SKILL.md").write_text("---\nname: ignored\n---\n")

    candidates = await installer.list_candidates(db, "local", str(repo))

    assert {(c.name, c.subpath) for c in candidates} == {("alpha", "a"), ("beta", "nested/b")}
    assert next(c for c in candidates if c.name == "alpha").description == "First"


@pytest.mark.asyncio
async def test_delete_skill_removes_targets_then_central(db, source: Path, home: Path):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    (home / ".claude").mkdir()
    result = await sync_service.sync_skill_to_tool(db, skill.id, "claude_code", home=home)

    await installer.delete_skill(db, skill.id)

    assert not Path(result.target_path).is_symlink()
    assert not Path(skill.central_path).exists()
    assert await skill_store.get_skill(db, skill.id) is None
    assert await skill_store.list_skill_targets(db, skill.id) == []
    with pytest.raises(NotFound):
        await installer.delete_skill(db, skill.id)


@pytest.mark.asyncio
async def test_read_skill_content(db, source: Path):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    content = await installer.read_skill_content(db, skill.id)
    assert content.startswith("---\nname: demo")


@pytest.mark.asyncio
async def test_git_cache_ttl_setting(db):
    assert await installer.git_cache_ttl(db) == settings.git_cache_ttl_secs
    await installer.set_git_cache_ttl(db, 300)
    assert await installer.git_cache_ttl(db) == 300


@pytest.mark.asyncio
async def test_delete_skill_reports_paths_it_could_not_remove(db, source: Path, home: Path, monkeypatch):
    skill = await installer.install(db, source_type="local", source_ref=str(source))
    (home / ".config" / "amp").mkdir(parents=True)
    (home / ".kimi").mkdir()
    result = await sync_service.sync_skill_to_tool(db, skill.id, "amp", home=home)

    def refuse(path):
        raise OSError("device busy")

    monkeypatch.setattr("skillshub.services.sync_engine.remove_path", refuse)
    with pytest.raises(PartialBatchFailure) as exc_info:
        await installer.delete_skill(db, skill.id)

    assert result.target_path in exc_info.value.failed
    assert skill.central_path in exc_info.value.failed
    assert await skill_store.get_skill(db, skill.id) is None
    assert await skill_store.list_skill_targets(db, skill.id) == []


def _git(*args: str, cwd: Path) -> None:
    subprocess.run(
        ["git", "-c", "user.email=t@example.com", "-c", "user.name=t", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


@pytest.mark.asyncio
async def test_update_records_revision_when_sibling_skill_moves_head(db, tmp_path: Path, skill_factory):
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "upstream"
    skill_factory(repo / "a", "alpha")
    skill_factory(repo / "b", "beta")
    _git("init", "-q", cwd=repo)
    _git("add", ".", cwd=repo)
    _git("commit", "-q", "-m", "init", cwd=repo)

    skill = await installer.install(db, source_type="git", source_ref=str(repo), subpath="a")
    installed_at, installed_hash = skill.updated_at, skill.content_hash
    (repo / "b" / "SKILL.md").write_text("---\nname: beta\n---\n\nchanged\n")
    _git("commit", "-q", "-am", "touch beta", cwd=repo)
    [status] = await installer.check_updates(db)
    assert status.status == UpdateState.UPDATE_AVAILABLE

    await installer.set_git_cache_ttl(db, 0)
    report = await installer.update(db, skill.id)

    assert report.changed is False
    refreshed = await skill_store.get_skill(db, skill.id)
    assert refreshed.updated_at == installed_at
    assert refreshed.content_hash == installed_hash
    [status] = await installer.check_updates(db)
    assert status.status == UpdateState.UP_TO_DATE
