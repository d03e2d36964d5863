"""Data exchanged between the client, the server and the database."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from appledb.platform import Platform


def _field(data: Mapping[str, Any], name: str, kind: type) -> Any:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    if name not in data:
        raise ValueError(f"missing field `{name}`")
    value = data[name]
    if isinstance(value, bool) and kind is not bool:
        raise ValueError(f"field `{name}` has the wrong type")
    if not isinstance(value, kind):
        raise ValueError(f"field `{name}` has the wrong type")
    return value


@dataclass(frozen=True)
class ExecutableEntitlement:
    """One flattened entitlement of an executable."""

    key: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "value": self.value}


@dataclass
class IPSWEntitlements:
    """Entitlements of every executable found in one firmware image."""

    platform: Platform
    version: str
    executable_entitlements: dict[str, set[ExecutableEntitlement]] = field(
        default_factory=dict
    )

    def add_executable_entitlements(
        self, executable_name: str, entitlements: Iterable[ExecutableEntitlement]
    ) -> None:
        """Record (or replace) the entitlements of one executable."""
        self.executable_entitlements[executable_name] = set(entitlements)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform.value,
            "version": self.version,
            "executable_entitlements": {
                name: [
                    ent.to_dict()
                    for ent in sorted(
                        self.executable_entitlements[name],
                        key=lambda e: (e.key, e.value),
                    )
                ]
                for name in sorted(self.executable_entitlements)
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IPSWEntitlements:
        platform_name = _field(data, "platform", str)
        try:
            platform = Platform(platform_name)
        except ValueError as exc:
            raise ValueError(f"unknown platform {platform_name!r}") from exc
        result = cls(platform, _field(data, "version", str))
        executables = _field(data, "executable_entitlements", Mapping)
        for name, entries in executables.items():
            if not isinstance(entries, list):
                raise ValueError(f"entitlements of `{name}` must be a list")
            result.add_executable_entitlements(
                name,
                (
                    ExecutableEntitlement(
                        _field(entry, "key", str), _field(entry, "value", str)
                    )
                    for entry in entries
                ),
            )
        return result


@dataclass(frozen=True)
class CreateExecutable:
    """Request body for creating an executable."""

    name: str
    operating_system_version_id: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CreateExecutable:
        return cls(
            name=_field(data, "name", str),
            operating_system_version_id=_field(data, "operating_system_version_id", int),
        )


@dataclass(frozen=True)
class CreateOperatingSystemVersion:
    """Request body for creating an operating system version."""

    operating_system_id: int
    version: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CreateOperatingSystemVersion:
        return cls(
            operating_system_id=_field(data, "operating_system_id", int),
            version=_field(data, "version", str),
        )


@dataclass(frozen=True)
class Entitlement:
    """A stored entitlement key/value pair."""

    id: int
    key: str
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "key": self.key, "value": self.value}


@dataclass(frozen=True)
class Executable:
    """A stored executable belonging to one operating system version."""

    id: int
    name: str
    operating_system_version_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "operating_system_version_id": self.operating_system_version_id,
        }


@dataclass(frozen=True)
class OperatingSystemVersion:
    """A stored version of an operating system."""

    id: int
    version: str
    operating_system_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "operating_system_id": self.operating_system_id,
        }


class OperatingSystemName(Enum):
    """Names of the operating systems stored in the database."""

    IOS = "ios"
    MACOS = "macos"
    WATCHOS = "watchos"
    TVOS = "tvos"

    @classmethod
    def parse(cls, value: str) -> OperatingSystemName:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"unknown operating system value {value}...") from None


@dataclass(frozen=True)
class OperatingSystem:
    """A stored operating system."""

    id: int
    name: OperatingSystemName

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OperatingSystem:
        return cls(
            id=_field(data, "id", int),
            name=OperatingSystemName.parse(_field(data, "name", str)),
        )


@dataclass
class EntitlementsDiff:
    """Entitlements added, removed and kept between two executables."""

    added: list[Entitlement] = field(default_factory=list)
    removed: list[Entitlement] = field(default_factory=list)
    unchanged: list[Entitlement] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": [e.to_dict() for e in self.added],
            "removed": [e.to_dict() for e in self.removed],
            "unchanged": [e.to_dict() for e in self.unchanged],
        }


def wrap_response(data: Any) -> dict[str, Any]:
    """Wrap a payload in the ``{"data": ...}`` envelope used by the API."""
    return {"data": data}