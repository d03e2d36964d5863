import plistlib

import pytest

from appledb.platform import Platform
from appledb.system_version import (
    PlatformDetectionError,
    read_platform_version_from_plist,
)

PLIST = "System/Library/CoreServices/SystemVersion.plist"


def _write(base, relative, contents):
    path = base / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        plistlib.dump(contents, handle)
    return path


def test_reads_plist_at_system_path(tmp_path):
    _write(tmp_path, PLIST, {"ProductName": "iPhone OS", "ProductVersion": "17.2"})
    assert read_platform_version_from_plist(tmp_path) == (Platform.IOS, "17.2")


def test_reads_plist_under_root(tmp_path):
    _write(
        tmp_path,
        "root/" + PLIST,
        {"ProductName": "iPhone OS", "ProductVersion": "16.4"},
    )
    assert read_platform_version_from_plist(str(tmp_path)) == (Platform.IOS, "16.4")


def test_binary_plist_is_accepted(tmp_path):
    path = tmp_path / PLIST
    path.parent.mkdir(parents=True)
    path.write_bytes(
        plistlib.dumps(
            {"ProductName": "iPhone OS", "ProductVersion": "15.0"},
            fmt=plistlib.FMT_BINARY,
        )
    )
    assert read_platform_version_from_plist(tmp_path) == (Platform.IOS, "15.0")


def test_invalid_first_plist_falls_back_to_second(tmp_path):
    bad = tmp_path / PLIST
    bad.parent.mkdir(parents=True)
    bad.write_bytes(b"not a plist")
    _write(
        tmp_path,
        "root/" + PLIST,
        {"ProductName": "iPhone OS", "ProductVersion": "18.0"},
    )
    assert read_platform_version_from_plist(tmp_path) == (Platform.IOS, "18.0")


def test_unknown_product_name_fails(tmp_path):
    _write(tmp_path, PLIST, {"ProductName": "Mac OS X", "ProductVersion": "14.0"})
    with pytest.raises(PlatformDetectionError, match="cannot automatically determine"):
        read_platform_version_from_plist(tmp_path)


def test_missing_version_fails(tmp_path):
    _write(tmp_path, PLIST, {"ProductName": "iPhone OS"})
    with pytest.raises(PlatformDetectionError):
        read_platform_version_from_plist(tmp_path)


def test_empty_mount_point_fails(tmp_path):
    with pytest.raises(PlatformDetectionError):
        read_platform_version_from_plist(tmp_path)


def test_non_dictionary_plist_fails(tmp_path):
    _write(tmp_path, PLIST, ["iPhone OS", "17.0"])
    with pytest.raises(PlatformDetectionError):
        read_platform_version_from_plist(tmp_path)