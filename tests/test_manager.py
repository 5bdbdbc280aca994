"""Tests for the DeploymentManager: serialization, history and stale artifact purge."""

import io
import threading
import time
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from site_deployer.core.exceptions import InvalidArtifactError, TargetNotFoundError
from site_deployer.core.models import Operation, TransactionStatus
from site_deployer.deploy import transaction as transaction_module
from site_deployer.deploy.journal import JournalEntry
from site_deployer.deploy.manager import DEPLOY_LOCK, DeploymentManager
from site_deployer.deploy.paths import backup_path, staging_path

from conftest import make_tar


def test_deploy_records_history(site_root: Path):
    manager = DeploymentManager(site_root)

    record = manager.deploy(str(site_root / "index.html"), io.BytesIO(b"hi"))

    assert record.status == TransactionStatus.COMMITTED
    assert record.operation == Operation.DEPLOY
    assert record.phase == "committed"
    assert record.finished_at is not None
    assert manager.get(record.transaction_id) is record
    assert manager.last is record
    assert manager.transactions_total == 1
    assert manager.transactions_failed == 0


def test_failed_transaction_is_recorded(site_root: Path):
    manager = DeploymentManager(site_root)

    with pytest.raises(InvalidArtifactError):
        manager.deploy(str(site_root / "docs") + "/", io.BytesIO(make_tar({"a": b"a"})), "text/html")

    record = manager.last
    assert record.status == TransactionStatus.FAILED
    assert record.error_kind == "invalid_artifact"
    assert record.is_directory is True
    assert manager.transactions_failed == 1


def test_history_is_bounded_and_most_recent_first(site_root: Path):
    manager = DeploymentManager(site_root, history_size=3)
    ids = [manager.deploy(str(site_root / f"{i}.txt"), io.BytesIO(b"x")).transaction_id for i in range(5)]

    assert [r.transaction_id for r in manager.list()] == list(reversed(ids[-3:]))
    assert manager.transactions_total == 5


def test_target_outside_root_rejected_and_reader_closed(site_root: Path, tmp_path: Path):
    manager = DeploymentManager(site_root)
    reader = io.BytesIO(b"x")

    with capture_logs() as logs:
        with pytest.raises(InvalidArtifactError):
            manager.deploy(str(tmp_path / "elsewhere.txt"), reader)

    assert reader.closed
    assert not (tmp_path / "elsewhere.txt").exists()
    rejected = [e for e in logs if e["event"] == "Transaction rejected"]
    assert len(rejected) == 1
    assert rejected[0]["log_level"] == "info"
    assert rejected[0]["operation"] == "deploy"
    assert rejected[0]["error_kind"] == "invalid_artifact"
    assert rejected[0]["status_code"] == 400


def test_sibling_with_common_prefix_is_outside(site_root: Path, tmp_path: Path):
    manager = DeploymentManager(site_root)
    with pytest.raises(InvalidArtifactError):
        manager.deploy(str(tmp_path / "site-other" / "x.txt"), io.BytesIO(b"x"))


def test_delete_root_refused(site_root: Path):
    manager = DeploymentManager(site_root)
    with capture_logs() as logs:
        with pytest.raises(InvalidArtifactError):
            manager.delete(str(site_root) + "/")
    assert site_root.is_dir()
    assert [(e["event"], e["operation"], e["log_level"]) for e in logs] == [
        ("Transaction rejected", "delete", "info")
    ]


def test_delete(site_root: Path):
    manager = DeploymentManager(site_root)
    (site_root / "gone.html").write_bytes(b"x")

    record = manager.delete(str(site_root / "gone.html"))

    assert record.operation == Operation.DELETE
    assert record.status == TransactionStatus.COMMITTED
    assert not (site_root / "gone.html").exists()

    with pytest.raises(TargetNotFoundError):
        manager.delete(str(site_root / "gone.html"))
    assert manager.last.status == TransactionStatus.FAILED


def test_transactions_never_overlap(site_root: Path, monkeypatch):
    real_extract = transaction_module.extract_file
    active = 0
    peak = 0
    guard = threading.Lock()

    def slow_extract(dest, reader):
        nonlocal active, peak
        with guard:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        try:
            return real_extract(dest, reader)
        finally:
            with guard:
                active -= 1

    monkeypatch.setattr(transaction_module, "extract_file", slow_extract)
    manager = DeploymentManager(site_root)
    errors = []

    def deploy(i):
        try:
            manager.deploy(str(site_root / "shared.txt"), io.BytesIO(f"v{i}".encode()))
        except Exception as e:  # pragma: no cover - surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=deploy, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert peak == 1
    assert manager.transactions_total == 6
    assert (site_root / "shared.txt").read_bytes() in {f"v{i}".encode() for i in range(6)}
    assert sorted(p.name for p in site_root.iterdir()) == ["shared.txt"]
    assert not DEPLOY_LOCK.locked()


def _journal_crashed(manager: DeploymentManager, target: Path, tx_id: str) -> JournalEntry:
    entry = JournalEntry(
        transaction_id=tx_id,
        operation="deploy",
        target=str(target),
        staging_path=staging_path(tx_id, str(target)),
        backup_path=backup_path(tx_id, str(target)),
    )
    manager.journal.record(entry)
    return entry


def test_purge_stale_removes_journaled_leftovers(site_root: Path):
    manager = DeploymentManager(site_root)
    (site_root / "index.html").write_bytes(b"live")
    crashed = _journal_crashed(manager, site_root / "index.html", "AAAAAAAAAAA")
    Path(crashed.staging_path).write_bytes(b"")
    Path(crashed.backup_path).write_bytes(b"old")
    unrelated = site_root / "page.html.BBBBBBBBBBB-tmp"
    unrelated.write_bytes(b"")

    removed = manager.purge_stale()

    assert [p.name for p in removed] == ["index.html.AAAAAAAAAAA-tmp"]
    assert Path(crashed.backup_path).exists()
    assert unrelated.exists()
    assert [e.transaction_id for e in manager.journal.entries()] == ["AAAAAAAAAAA"]

    removed = manager.purge_stale(include_backups=True)
    assert [p.name for p in removed] == ["index.html.AAAAAAAAAAA-backup"]
    assert manager.journal.entries() == []


def test_purge_stale_keeps_deployed_lookalikes(site_root: Path):
    manager = DeploymentManager(site_root)
    manager.deploy(str(site_root / "report.final_draft-tmp"), io.BytesIO(b"report"))
    manager.deploy(
        str(site_root / "docs") + "/",
        io.BytesIO(make_tar({"notes.v1_2_3_4_56-backup": b"notes"})),
        "application/x-tar",
    )

    assert manager.purge_stale(include_backups=True) == []
    assert (site_root / "report.final_draft-tmp").read_bytes() == b"report"
    assert (site_root / "docs" / "notes.v1_2_3_4_56-backup").read_bytes() == b"notes"
