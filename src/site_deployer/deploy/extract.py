"""Populate a staging path from an uploaded file or tar archive."""

from __future__ import annotations

import os
import shutil
import tarfile
import zlib
from typing import BinaryIO, Dict

import structlog

from site_deployer.core.exceptions import InvalidArtifactError, StagingError
from site_deployer.deploy.paths import fs_path

logger = structlog.get_logger()

FILE_PERM = 0o644
STAGING_DIR_PERM = 0o755
DEFAULT_PARENT_PERM = 0o755
COPY_BUFSIZE = 64 * 1024

TAR = "tar"
TAR_GZIP = "tar+gzip"

ARCHIVE_CONTENT_TYPES: Dict[str, str] = {
    "application/x-tar": TAR,
    "application/tar": TAR,
    "application/x-tar+gzip": TAR_GZIP,
    "application/tar+gzip": TAR_GZIP,
    "application/x-gzip": TAR_GZIP,
    "application/gzip": TAR_GZIP,
}

_TARFILE_STREAM_MODES = {TAR: "r|", TAR_GZIP: "r|gz"}


def normalize_content_type(content_type: str | None) -> str:
    """Drop parameters such as ``charset`` and lowercase the media type."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def archive_format(content_type: str | None) -> str:
    """Map a content-type to an archive format, rejecting anything else."""
    fmt = ARCHIVE_CONTENT_TYPES.get(normalize_content_type(content_type))
    if fmt is None:
        raise InvalidArtifactError(
            f"bad content-type for directory deployment: {content_type!r}",
            public_message=(
                "bad content-type: only 'application/x-tar' and "
                "'application/x-tar+gzip' are allowed for directories"
            ),
        )
    return fmt


def extract_file(dest: str, reader: BinaryIO) -> int:
    """Create ``dest`` and stream the body into it.

    ``dest`` must not exist yet: a leftover staging file is an error, never
    silently overwritten. Returns the number of bytes written.
    """
    dest = fs_path(dest)
    try:
        fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_PERM)
    except OSError as e:
        raise StagingError(
            f"failed to open staging file '{dest}' for extraction: {e}",
            staging_path=dest,
            cause=e,
        ) from e

    written = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = reader.read(COPY_BUFSIZE)
                if not chunk:
                    break
                out.write(chunk)
                written += len(chunk)
    except OSError as e:
        raise StagingError(
            f"failed to copy data to staging file '{dest}': {e}",
            staging_path=dest,
            cause=e,
        ) from e
    return written


def extract_directory(dest: str, reader: BinaryIO, content_type: str | None) -> int:
    """Extract a tar or tar.gz body into a fresh staging directory.

    The content-type is checked before anything touches the filesystem.
    Returns the number of regular files written.
    """
    fmt = archive_format(content_type)
    return extract_tar(dest, reader, compression=fmt)


def _contained_path(root: str, name: str) -> str | None:
    """Join ``name`` onto ``root`` and return it only if it stays inside."""
    candidate = os.path.normpath(os.path.join(root, name))
    if candidate == root:
        return candidate
    if candidate.startswith(root + os.sep):
        return candidate
    return None


def extract_tar(dest: str, reader: BinaryIO, compression: str = TAR) -> int:
    """Walk a tar stream and materialize it below ``dest``.

    Every entry must resolve inside ``dest``; a single escaping entry fails
    the whole extraction. Directories and regular files are created with
    the entry mode; links, devices and FIFOs are skipped.
    """
    root = os.path.abspath(fs_path(dest))
    try:
        os.mkdir(root, STAGING_DIR_PERM)
    except OSError as e:
        raise StagingError(
            f"failed to create staging directory '{root}': {e}",
            staging_path=root,
            cause=e,
        ) from e

    files_written = 0
    try:
        with tarfile.open(fileobj=reader, mode=_TARFILE_STREAM_MODES[compression]) as tar:
            for member in tar:
                target_path = _contained_path(root, member.name)
                if target_path is None or (target_path == root and not member.isdir()):
                    raise InvalidArtifactError(
                        f"security error: tar entry escapes the staging directory: {member.name!r}",
                        public_message="archive contains an entry outside of the target directory",
                        staging_path=root,
                    )

                if member.isdir():
                    if target_path != root:
                        _write_dir(target_path, member)
                elif member.isreg():
                    _write_file(target_path, tar, member)
                    files_written += 1
                else:
                    logger.info(
                        "Skipping unsupported tar entry type",
                        entry_name=member.name,
                        entry_type=member.type.decode("ascii", "replace"),
                    )
    # ValueError (UnicodeError included) comes from entry names the OS cannot take, e.g. an embedded NUL
    except (tarfile.TarError, EOFError, zlib.error, ValueError) as e:
        raise InvalidArtifactError(
            f"failed to read {compression} archive: {e}",
            public_message="malformed archive",
            staging_path=root,
            cause=e,
        ) from e
    except OSError as e:
        raise StagingError(
            f"failed to extract archive into '{root}': {e}",
            staging_path=root,
            cause=e,
        ) from e

    logger.debug("Archive extracted", staging_path=root, files=files_written)
    return files_written


def _write_dir(path: str, member: tarfile.TarInfo) -> None:
    try:
        os.makedirs(path, member.mode & 0o777, exist_ok=True)
    except OSError as e:
        raise StagingError(f"failed to create directory {path}: {e}", cause=e) from e


def _write_file(path: str, tar: tarfile.TarFile, member: tarfile.TarInfo) -> None:
    try:
        os.makedirs(os.path.dirname(path), DEFAULT_PARENT_PERM, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, member.mode & 0o777)
        with os.fdopen(fd, "wb") as out:
            src = tar.extractfile(member)
            if src is not None:
                shutil.copyfileobj(src, out, COPY_BUFSIZE)
    except OSError as e:
        raise StagingError(f"failed to write file {path}: {e}", cause=e) from e
