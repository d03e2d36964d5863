"""Detect the platform and version of a mounted firmware image."""

from __future__ import annotations

import plistlib
from os import PathLike
from pathlib import Path
from xml.parsers.expat import ExpatError

from appledb.platform import Platform

_PLIST_LOCATIONS = (
    "System/Library/CoreServices/SystemVersion.plist",
    "root/System/Library/CoreServices/SystemVersion.plist",
)


class PlatformDetectionError(Exception):
    """Raised when no usable SystemVersion.plist is found."""


def read_platform_version_from_plist(
    mount_point: str | PathLike[str],
) -> tuple[Platform, str]:
    """Return the platform and product version read from SystemVersion.plist."""
    root = Path(mount_point)
    for hint in _PLIST_LOCATIONS:
        path = root / hint
        if not path.exists():
            continue
        try:
            with path.open("rb") as handle:
                contents = plistlib.load(handle)
        except (OSError, ValueError, ExpatError):
            continue
        if not isinstance(contents, dict):
            continue
        product_name = contents.get("ProductName")
        if not isinstance(product_name, str):
            continue
        platform = Platform.from_product_name(product_name)
        version = contents.get("ProductVersion")
        if platform is not None and isinstance(version, str):
            return platform, version

    raise PlatformDetectionError(
        "cannot automatically determine system platform and version"
    )