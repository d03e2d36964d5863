"""Request handlers of the entitlement API, independent of the web layer."""

from __future__ import annotations

import functools
import logging
import sqlite3
from typing import Any, Callable, TypeVar

from appledb.database import DBController, StatusKind, UniqueViolationError
from appledb.models import (
    CreateExecutable,
    CreateOperatingSystemVersion,
    Entitlement,
    EntitlementsDiff,
    IPSWEntitlements,
    wrap_response,
)

log = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])

_FAILURES = (LookupError, ValueError, sqlite3.Error)


class AppError(Exception):
    """A failed request, reported to clients as HTTP 500 with a reason."""

    status_code = 500

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_response_body(self) -> dict[str, str]:
        """The JSON body sent back to the client."""
        return {"reason": self.reason}


def _app_result(func: _F) -> _F:
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AppError:
            raise
        except _FAILURES as exc:
            raise AppError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


def _entitlement_order(entitlement: Entitlement) -> tuple[int, str, str]:
    return (entitlement.id, entitlement.key, entitlement.value)


# Admin handlers


@_app_result
def post_executable_entitlements(
    db: DBController, entitlements: IPSWEntitlements
) -> dict[str, Any]:
    """Store every executable of a firmware image together with its entitlements."""
    os_version = db.get_or_create_operating_system_version(
        entitlements.platform.value, entitlements.version
    )

    for executable, executable_entitlements in sorted(
        entitlements.executable_entitlements.items(), key=lambda item: item[0]
    ):
        executable_status = db.get_or_create_executable(os_version.id, executable)
        log.info("Created executable %s", executable)

        if executable_status.kind is StatusKind.ALREADY_EXISTS:
            log.warning(
                "Executable %s already exists, skipping...", executable_status.identifier
            )
            continue

        created = 0
        existing = 0
        for entitlement in sorted(
            executable_entitlements, key=lambda e: (e.key, e.value)
        ):
            status = db.get_or_create_entitlement(entitlement.key, entitlement.value)
            if status.kind is StatusKind.ALREADY_EXISTS:
                existing += 1
            else:
                created += 1

            try:
                db.create_executable_entitlement(
                    executable_status.identifier, status.identifier
                )
            except UniqueViolationError:
                log.warning(
                    "Entitlement %s already exists for executable %s. Likely a twin...",
                    status.identifier,
                    executable_status.identifier,
                )
                continue
            except sqlite3.Error as exc:
                raise AppError(f"Unexpected database error: {exc!r}") from exc

        log.info(
            "Added %d entitlements to executable %s - created: %d existing: %d",
            len(executable_entitlements),
            executable_status.identifier,
            created,
            existing,
        )

    return wrap_response("ok")


@_app_result
def post_executable(db: DBController, request: CreateExecutable) -> dict[str, Any]:
    """Get or create an executable and report which of the two happened."""
    status = db.get_or_create_executable(
        request.operating_system_version_id, request.name
    )
    return wrap_response(status.to_dict())


@_app_result
def post_operating_system_version(
    db: DBController, request: CreateOperatingSystemVersion
) -> dict[str, Any]:
    """Create an operating system version and return its identifier."""
    new_id = db.create_operating_system_version(
        request.operating_system_id, request.version
    )
    return wrap_response(new_id)


# Public handlers: entitlements


@_app_result
def get_entitlements(db: DBController) -> list[dict[str, Any]]:
    return [e.to_dict() for e in db.get_entitlements()]


@_app_result
def get_entitlement_by_id(db: DBController, entitlement_id: int) -> dict[str, Any]:
    return db.get_entitlement_by_id(entitlement_id).to_dict()


@_app_result
def get_entitlements_for_executable(
    db: DBController, executable_id: int
) -> list[dict[str, Any]]:
    return [e.to_dict() for e in db.get_entitlements_for_executable(executable_id)]


@_app_result
def diff_entitlements_for_executables(
    db: DBController, from_executable_id: int, to_executable_id: int
) -> dict[str, Any]:
    """Compare the entitlements of two executables."""
    before = set(db.get_entitlements_for_executable(from_executable_id))
    after = set(db.get_entitlements_for_executable(to_executable_id))

    diff = EntitlementsDiff(
        added=sorted(after - before, key=_entitlement_order),
        removed=sorted(before - after, key=_entitlement_order),
        unchanged=sorted(after & before, key=_entitlement_order),
    )
    return diff.to_dict()


# Public handlers: executables


@_app_result
def get_executables(db: DBController) -> list[dict[str, Any]]:
    return [e.to_dict() for e in db.get_executables()]


@_app_result
def get_executable_by_id(db: DBController, executable_id: int) -> dict[str, Any]:
    return db.get_executable_by_id(executable_id).to_dict()


@_app_result
def get_executables_by_name(db: DBController, name: str) -> list[dict[str, Any]]:
    return [e.to_dict() for e in db.get_executables_by_name(name)]


@_app_result
def get_executables_with_entitlement_for_os_version(
    db: DBController, operating_system_version_id: int, entitlement_key: str
) -> list[dict[str, Any]]:
    return [
        e.to_dict()
        for e in db.get_executables_with_entitlement_for_os_version(
            operating_system_version_id, entitlement_key
        )
    ]


# Public handlers: operating system versions


@_app_result
def get_operating_system_versions(db: DBController) -> list[dict[str, Any]]:
    return [v.to_dict() for v in db.get_operating_system_versions()]


@_app_result
def get_operating_system_version_by_id(
    db: DBController, version_id: int
) -> dict[str, Any]:
    return db.get_operating_system_version_by_id(version_id).to_dict()


# Public handlers: operating systems


@_app_result
def get_operating_systems(db: DBController) -> dict[str, Any]:
    return wrap_response([os.to_dict() for os in db.get_operating_systems()])


@_app_result
def get_operating_system_by_id(
    db: DBController, operating_system_id: int
) -> dict[str, Any]:
    return wrap_response(db.get_operating_system_by_id(operating_system_id).to_dict())