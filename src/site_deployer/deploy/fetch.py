"""Download remote artifacts before handing them to a transaction."""

from __future__ import annotations

import hashlib
import os
import time
from pathlib import Path
from typing import Iterable, Optional

import httpx
import structlog

from site_deployer.core.exceptions import FetchError


logger = structlog.get_logger()

DOWNLOAD_SUFFIX = ".downloading"
CHUNK_SIZE = 64 * 1024


def is_remote_source(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def _write_stream_to_file(chunks: Iterable[bytes], dest_path: Path, max_size_bytes: int) -> int:
    """Write ``chunks`` next to ``dest_path`` and move them into place.

    A partial download never shows up at ``dest_path``. Returns the number
    of bytes written.
    """
    partial = dest_path.with_name(dest_path.name + DOWNLOAD_SUFFIX)
    size = 0
    try:
        with open(partial, "wb") as f:
            for chunk in chunks:
                size += len(chunk)
                if size > max_size_bytes:
                    raise FetchError(
                        f"Artifact exceeds maximum allowed size of {max_size_bytes} bytes",
                        code="too_large",
                    )
                f.write(chunk)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    os.replace(partial, dest_path)
    return size


def _sha256_of(path: Path) -> str:
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()


def _download_once(url: str, dest_path: Path, max_size_bytes: int, timeout: float) -> Optional[str]:
    with httpx.Client(timeout=httpx.Timeout(timeout), follow_redirects=True) as client:
        with client.stream("GET", url) as resp:
            resp.raise_for_status()
            size = _write_stream_to_file(resp.iter_bytes(CHUNK_SIZE), dest_path, max_size_bytes)
            content_type = resp.headers.get("content-type")
    logger.info("Downloaded artifact", url=url, bytes=size, content_type=content_type)
    return content_type


def fetch_artifact(
    url: str,
    dest_path: Path,
    *,
    max_size_bytes: int = 2 * 1024 * 1024,
    total_timeout_sec: float = 60.0,
    max_retries: int = 3,
    backoff_base: float = 0.3,
    sha256: Optional[str] = None,
) -> Optional[str]:
    """Download ``url`` to ``dest_path`` and return the served Content-Type.

    Transport errors and HTTP error statuses are retried with exponential
    backoff, within ``total_timeout_sec`` overall. Size and checksum
    failures are final.
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + total_timeout_sec
    last_error: Optional[Exception] = None

    for attempt in range(1, max_retries + 1):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            content_type = _download_once(url, dest_path, max_size_bytes, remaining)
        except (httpx.HTTPError, OSError) as e:
            last_error = e
            logger.warning("Fetch attempt failed", url=url, attempt=attempt, error=str(e))
            if attempt < max_retries:
                time.sleep(min(backoff_base * 2 ** (attempt - 1), max(0.0, deadline - time.monotonic())))
            continue

        if sha256:
            actual = _sha256_of(dest_path)
            if actual != sha256.lower():
                dest_path.unlink(missing_ok=True)
                raise FetchError(f"SHA256 mismatch. expected={sha256} actual={actual}", code="sha256_mismatch")
        return content_type

    raise FetchError(f"Failed to fetch {url}: {last_error}", code="fetch_failed")
