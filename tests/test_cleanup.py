from pathlib import Path

from structlog.testing import capture_logs

from site_deployer.deploy.cleanup import (
    cleanup_path,
    find_stale_artifacts,
    purge_stale_artifacts,
    remove_path,
)

TX1 = "AAAAAAAAAAA"
TX2 = "BBBBBBBBBBB"


def test_remove_path_handles_files_trees_and_missing(tmp_path: Path):
    f = tmp_path / "f.txt"
    f.write_bytes(b"x")
    d = tmp_path / "d"
    (d / "e").mkdir(parents=True)
    (d / "e" / "g.txt").write_bytes(b"g")

    remove_path(str(f))
    remove_path(str(d) + "/")
    remove_path(str(tmp_path / "missing"))

    assert not f.exists()
    assert not d.exists()


def test_remove_path_does_not_follow_symlinks(tmp_path: Path):
    real = tmp_path / "real"
    real.mkdir()
    (real / "keep.txt").write_bytes(b"keep")
    link = tmp_path / "link"
    link.symlink_to(real)

    remove_path(str(link))

    assert not link.exists()
    assert (real / "keep.txt").read_bytes() == b"keep"


def test_cleanup_path_logs_instead_of_raising(tmp_path: Path, monkeypatch):
    import site_deployer.deploy.cleanup as cleanup_module

    def boom(path):
        raise PermissionError("denied")

    monkeypatch.setattr(cleanup_module, "remove_path", boom)
    with capture_logs() as logs:
        assert cleanup_path(str(tmp_path / "x")) is False
    assert logs[0]["log_level"] == "warning"


def test_find_stale_artifacts(tmp_path: Path):
    (tmp_path / f"index.html.{TX1}-tmp").write_bytes(b"")
    (tmp_path / f"docs.{TX2}-backup").mkdir()
    (tmp_path / "index.html").write_bytes(b"")
    (tmp_path / "notes.short-tmp").write_bytes(b"")

    artifacts = find_stale_artifacts(tmp_path)

    assert [(a.path.name, a.kind, a.transaction_id) for a in artifacts] == [
        (f"docs.{TX2}-backup", "backup", TX2),
        (f"index.html.{TX1}-tmp", "staging", TX1),
    ]
    assert artifacts[0].target == tmp_path / "docs"


def test_find_stale_artifacts_in_missing_directory(tmp_path: Path):
    assert find_stale_artifacts(tmp_path / "missing") == []


def test_purge_keeps_backups_by_default(tmp_path: Path):
    staging = tmp_path / f"index.html.{TX1}-tmp"
    staging.write_bytes(b"")
    backup = tmp_path / f"index.html.{TX2}-backup"
    backup.write_bytes(b"")
    (tmp_path / "index.html").write_bytes(b"")

    removed = purge_stale_artifacts(tmp_path)

    assert removed == [staging]
    assert backup.exists()


def test_purge_backups_only_when_target_exists(tmp_path: Path):
    kept = tmp_path / f"orphan.html.{TX1}-backup"
    kept.write_bytes(b"last copy")
    dropped = tmp_path / f"index.html.{TX2}-backup"
    dropped.write_bytes(b"")
    (tmp_path / "index.html").write_bytes(b"")

    with capture_logs() as logs:
        removed = purge_stale_artifacts(tmp_path, include_backups=True)

    assert removed == [dropped]
    assert kept.read_bytes() == b"last copy"
    assert any(entry["log_level"] == "error" for entry in logs)


def test_purge_restricted_to_one_target(tmp_path: Path):
    ours = tmp_path / f"site.{TX1}-tmp"
    ours.mkdir()
    theirs = tmp_path / f"other.{TX2}-tmp"
    theirs.mkdir()

    removed = purge_stale_artifacts(tmp_path, target=tmp_path / "site")

    assert removed == [ours]
    assert theirs.exists()
