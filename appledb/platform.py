"""Apple platforms known to the entitlement database."""

from __future__ import annotations

from enum import Enum


class Platform(Enum):
    """An Apple operating system family."""

    IOS = "ios"
    MACOS = "macos"
    WATCHOS = "watchos"
    TVOS = "tvos"

    @classmethod
    def from_product_name(cls, product_name: str) -> Platform | None:
        """Map a SystemVersion.plist ``ProductName`` to a platform, if known."""
        return _PRODUCT_NAMES.get(product_name)

    def __str__(self) -> str:
        return self.value


_PRODUCT_NAMES = {
    "iPhone OS": Platform.IOS,
}