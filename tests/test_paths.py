import os
import re

import pytest

from site_deployer.deploy.paths import (
    ARTIFACT_NAME_RE,
    backup_path,
    fs_path,
    is_directory_target,
    new_transaction_id,
    parent_directory,
    staging_path,
)
from site_deployer.utils.paths import UnsafePathError, check_windows_path, sanitized_path_join


def test_transaction_id_is_url_safe_and_unpadded():
    ids = {new_transaction_id() for _ in range(200)}
    assert len(ids) == 200
    for tx_id in ids:
        assert re.fullmatch(r"[A-Za-z0-9_-]{11}", tx_id)


def test_file_target_siblings():
    assert staging_path("abc", "/srv/site/index.html") == "/srv/site/index.html.abc-tmp"
    assert backup_path("abc", "/srv/site/index.html") == "/srv/site/index.html.abc-backup"


def test_directory_target_keeps_trailing_slash():
    assert staging_path("abc", "/srv/site/docs/") == "/srv/site/docs.abc-tmp/"
    assert backup_path("abc", "/srv/site/docs/") == "/srv/site/docs.abc-backup/"


def test_siblings_share_the_parent_directory():
    tx_id = new_transaction_id()
    target = "/srv/site/a/b/page.html"
    assert os.path.dirname(staging_path(tx_id, target)) == "/srv/site/a/b"
    assert os.path.dirname(backup_path(tx_id, target)) == "/srv/site/a/b"


def test_filesystem_root_has_no_siblings():
    with pytest.raises(ValueError):
        staging_path("abc", "/")
    with pytest.raises(ValueError):
        backup_path("abc", "")


def test_fs_path_and_parent():
    assert fs_path("/srv/site/docs/") == "/srv/site/docs"
    assert fs_path("/srv/site/index.html") == "/srv/site/index.html"
    assert fs_path("/") == "/"
    assert parent_directory("/srv/site/docs/") == "/srv/site"
    assert is_directory_target("/srv/site/docs/")
    assert not is_directory_target("/srv/site/docs")


def test_artifact_name_pattern_matches_generated_names():
    tx_id = new_transaction_id()
    name = os.path.basename(fs_path(backup_path(tx_id, "/srv/site/docs/")))
    match = ARTIFACT_NAME_RE.match(name)
    assert match
    assert match.group("name") == "docs"
    assert match.group("id") == tx_id
    assert match.group("suffix") == "-backup"
    assert ARTIFACT_NAME_RE.match("index.html") is None


@pytest.mark.parametrize(
    "url_path,expected",
    [
        ("index.html", "/srv/site/index.html"),
        ("a/b/c.txt", "/srv/site/a/b/c.txt"),
        ("docs/", "/srv/site/docs/"),
        ("../../etc/passwd", "/srv/site/etc/passwd"),
        ("a/../../b", "/srv/site/b"),
        ("//double//slash", "/srv/site/double/slash"),
        ("", "/srv/site/"),
        ("..", "/srv/site/"),
    ],
)
def test_sanitized_path_join_stays_below_root(url_path, expected):
    assert sanitized_path_join("/srv/site", url_path) == expected


def test_sanitized_path_join_backslashes_are_separators():
    assert sanitized_path_join("/srv/site", "..\\..\\etc") == "/srv/site/etc"


def test_windows_checks_only_apply_on_windows():
    check_windows_path("/a:b", platform="linux")
    check_windows_path("/PROGRA~1", platform="linux")


def test_windows_alternate_data_streams_rejected():
    with pytest.raises(UnsafePathError):
        check_windows_path("/index.html:secret", platform="win32")


def test_windows_short_names_rejected():
    with pytest.raises(UnsafePathError):
        check_windows_path("/PROGRA~1", platform="win32")
    with pytest.raises(UnsafePathError):
        check_windows_path("/docs/SECRET~1.TXT. ", platform="win32")
    # Long names with a tilde are not 8.3 aliases
    check_windows_path("/docs/a-rather-long-name~draft.html", platform="win32")
