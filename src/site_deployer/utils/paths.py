"""Utilities for turning request paths into filesystem targets."""

import os
import posixpath
import sys


class UnsafePathError(ValueError):
    """Request path that must not reach the filesystem."""


def check_windows_path(url_path: str, platform: str = sys.platform) -> None:
    """Reject request paths that could bypass file hiding on Windows.

    Alternate Data Streams (``file.txt:stream``) and 8.3 short names
    (``PROGRA~1``) both alias other files.
    """
    if not platform.startswith("win"):
        return
    if ":" in url_path:
        raise UnsafePathError("illegal ADS path")
    # Windows ignores trailing dots and spaces
    trimmed = url_path.rstrip(". ")
    if len(posixpath.basename(trimmed)) <= 12 and "~" in trimmed:
        raise UnsafePathError("illegal short name")


def sanitized_path_join(root: str, url_path: str) -> str:
    """Join a URL path onto ``root`` without ever leaving it.

    The URL path is cleaned as an absolute URL path first, so ``..``
    segments stop at the root. A trailing slash on the request path is kept
    since it marks a directory target. The root itself comes back with a
    trailing separator.
    """
    if not root:
        root = "."
    root = os.path.abspath(root)
    cleaned = posixpath.normpath("/" + url_path.replace("\\", "/"))
    # normpath keeps a leading "//"
    relative = cleaned.lstrip("/")
    if not relative:
        return root.rstrip(os.sep) + os.sep
    joined = os.path.join(root, *relative.split("/"))
    if url_path.endswith("/"):
        joined += os.sep
    return joined
