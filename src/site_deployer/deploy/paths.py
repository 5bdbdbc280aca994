"""Staging and backup path derivation.

Staging and backup paths are siblings of the target. Keeping them in the
same parent directory keeps them on the same filesystem, which is what makes
``os.rename`` atomic for the backup and swap steps (``/tmp`` is often a RAM
filesystem, so it is never used).

Layout, relied upon by operational tooling::

    <target>.<id>-tmp       staging
    <target>.<id>-backup    backup

A directory target (trailing separator) keeps its trailing separator on
both derived paths: ``/site/`` gives ``/site.<id>-tmp/``.
"""

from __future__ import annotations

import base64
import os
import re
import secrets

TRANSACTION_ID_BYTES = 8
STAGING_SUFFIX = "-tmp"
BACKUP_SUFFIX = "-backup"

# 8 bytes -> 11 characters of URL-safe base64 without padding
ARTIFACT_NAME_RE = re.compile(r"^(?P<name>.+)\.(?P<id>[A-Za-z0-9_-]{11})(?P<suffix>-tmp|-backup)$")


def new_transaction_id() -> str:
    """Return a fresh, non-guessable transaction identifier.

    A failing randomness source is a broken host, not a deployment error, so
    nothing here catches it.
    """
    raw = secrets.token_bytes(TRANSACTION_ID_BYTES)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def is_directory_target(target: str) -> bool:
    return target.endswith("/") or target.endswith(os.sep)


def fs_path(path: str) -> str:
    """Strip the trailing separator so the path can be handed to the OS."""
    stripped = path.rstrip("/" + os.sep)
    return stripped or path


def _sibling(tx_id: str, target: str, suffix: str) -> str:
    if not target:
        raise ValueError("target path is empty")
    base = fs_path(target)
    parent = os.path.dirname(base)
    if base == parent or not os.path.basename(base):
        raise ValueError(f"target has no parent directory: {target!r}")
    path = f"{base}.{tx_id}{suffix}"
    if is_directory_target(target):
        path += "/"
    return path


def staging_path(tx_id: str, target: str) -> str:
    return _sibling(tx_id, target, STAGING_SUFFIX)


def backup_path(tx_id: str, target: str) -> str:
    return _sibling(tx_id, target, BACKUP_SUFFIX)


def parent_directory(target: str) -> str:
    return os.path.dirname(fs_path(target))
