"""On-disk record of in-flight transactions.

A journal entry is written before a transaction touches the filesystem and
dropped once neither its staging nor its backup path is left. After a
crash, the remaining entries name exactly the artifacts this deployer
created, so recovery never has to guess from file names: deployed content
that merely looks like ``<name>.<id>-tmp`` is never touched.

The journal lives next to the site root (``.<root name>.journal``), never
inside it, so it is not served.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List

import structlog
from pydantic import BaseModel, Field, ValidationError

from site_deployer.deploy.paths import fs_path

logger = structlog.get_logger()

ENTRY_SUFFIX = ".json"


class JournalEntry(BaseModel):
    """Paths a transaction may leave behind."""

    transaction_id: str
    operation: str
    target: str
    staging_path: str
    backup_path: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def leftovers(self) -> List[str]:
        """Staging and backup paths still present on disk."""
        return [p for p in (self.staging_path, self.backup_path) if os.path.lexists(fs_path(p))]


def default_journal_dir(root: Path) -> Path:
    return root.parent / f".{root.name}.journal"


class Journal:
    """One JSON file per in-flight transaction."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _entry_path(self, transaction_id: str) -> Path:
        return self.directory / f"{transaction_id}{ENTRY_SUFFIX}"

    def record(self, entry: JournalEntry) -> None:
        """Persist ``entry`` before the transaction creates anything."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._entry_path(entry.transaction_id)
        partial = path.with_name(path.name + ".partial")
        partial.write_text(entry.model_dump_json())
        os.replace(partial, path)

    def release(self, entry: JournalEntry) -> bool:
        """Drop ``entry`` unless it still has artifacts on disk.

        Returns True when the entry was dropped.
        """
        leftovers = entry.leftovers()
        if leftovers:
            logger.info("Keeping journal entry", transaction_id=entry.transaction_id, leftovers=leftovers)
            return False
        self._entry_path(entry.transaction_id).unlink(missing_ok=True)
        return True

    def entries(self) -> List[JournalEntry]:
        """Entries left by transactions that did not finish cleanly, oldest first."""
        entries: List[JournalEntry] = []
        if not self.directory.is_dir():
            return entries
        for path in sorted(self.directory.glob(f"*{ENTRY_SUFFIX}")):
            try:
                entries.append(JournalEntry.model_validate_json(path.read_text()))
            except (OSError, ValidationError) as e:
                logger.error("Unreadable journal entry", path=str(path), error=str(e))
        entries.sort(key=lambda entry: entry.started_at)
        return entries
