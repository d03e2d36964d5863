"""SQLite storage for operating systems, executables and their entitlements."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from enum import Enum
from os import PathLike
from typing import Any, Iterator, Sequence

from appledb.models import (
    Entitlement,
    Executable,
    OperatingSystem,
    OperatingSystemName,
    OperatingSystemVersion,
)
from appledb.schema import apply_migrations

log = logging.getLogger(__name__)


class NotFoundError(LookupError):
    """Raised when a requested row does not exist."""


class UniqueViolationError(sqlite3.IntegrityError):
    """Raised when an insert would break a unique constraint."""


class StatusKind(Enum):
    """Whether a get-or-create call found an existing row or made a new one."""

    ALREADY_EXISTS = "AlreadyExists"
    CREATED = "Created"


@dataclass(frozen=True)
class DBStatus:
    """Outcome of a get-or-create call and the identifier of the row."""

    kind: StatusKind
    identifier: int

    def to_dict(self) -> dict[str, int]:
        return {self.kind.value: self.identifier}


class DBController:
    """Access to the entitlement database; migrations are applied on open."""

    def __init__(self, database_path: str | PathLike[str]) -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(database_path), check_same_thread=False)
        try:
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
            apply_migrations(self._conn)
        except Exception:
            self._conn.close()
            raise

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> DBController:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # Low-level helpers

    def _rows(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _row(self, sql: str, params: Sequence[Any] = ()) -> tuple | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _insert(self, sql: str, params: Sequence[Any]) -> int:
        with self._lock:
            try:
                with self._conn:
                    cursor = self._conn.execute(sql, params)
            except sqlite3.IntegrityError as exc:
                if str(exc).startswith("UNIQUE constraint failed"):
                    raise UniqueViolationError(str(exc)) from exc
                raise
            return cursor.lastrowid

    # Entitlements

    def get_entitlements(self) -> list[Entitlement]:
        """Every stored entitlement."""
        return [
            Entitlement(*row)
            for row in self._rows('SELECT "id", "key", "value" FROM "entitlement" ORDER BY "id"')
        ]

    def get_entitlement_by_id(self, entitlement_id: int) -> Entitlement:
        row = self._row(
            'SELECT "id", "key", "value" FROM "entitlement" WHERE "id" = ?',
            (entitlement_id,),
        )
        if row is None:
            raise NotFoundError(f"unknown entitlement id {entitlement_id}")
        return Entitlement(*row)

    def get_entitlements_for_executable(self, executable_id: int) -> list[Entitlement]:
        """Entitlements linked to one executable."""
        self.get_executable_by_id(executable_id)
        rows = self._rows(
            'SELECT e."id", e."key", e."value" FROM "entitlement" e '
            'JOIN "executable_entitlement" ee ON ee."entitlement_id" = e."id" '
            'WHERE ee."executable_id" = ? ORDER BY e."id"',
            (executable_id,),
        )
        return [Entitlement(*row) for row in rows]

    def get_or_create_entitlement(self, key: str, value: str) -> DBStatus:
        row = self._row(
            'SELECT "id" FROM "entitlement" WHERE "key" = ? AND "value" = ?',
            (str(key), str(value)),
        )
        if row is not None:
            return DBStatus(StatusKind.ALREADY_EXISTS, row[0])
        new_id = self._insert(
            'INSERT INTO "entitlement" ("key", "value") VALUES (?, ?)',
            (str(key), str(value)),
        )
        return DBStatus(StatusKind.CREATED, new_id)

    def create_executable_entitlement(self, executable_id: int, entitlement_id: int) -> None:
        """Link an entitlement to an executable."""
        self._insert(
            'INSERT INTO "executable_entitlement" ("executable_id", "entitlement_id") '
            "VALUES (?, ?)",
            (executable_id, entitlement_id),
        )

    # Executables

    _EXECUTABLE_COLUMNS = '"id", "name", "operating_system_version_id"'

    def _executables(self, rows: Iterator[tuple] | list[tuple]) -> list[Executable]:
        return [Executable(*row) for row in rows]

    def get_executables(self) -> list[Executable]:
        return self._executables(
            self._rows(f'SELECT {self._EXECUTABLE_COLUMNS} FROM "executable" ORDER BY "id"')
        )

    def get_executable_by_id(self, executable_id: int) -> Executable:
        row = self._row(
            f'SELECT {self._EXECUTABLE_COLUMNS} FROM "executable" WHERE "id" = ?',
            (executable_id,),
        )
        if row is None:
            raise NotFoundError(f"unknown executable id {executable_id}")
        return Executable(*row)

    def get_executables_by_name(self, name: str) -> list[Executable]:
        return self._executables(
            self._rows(
                f'SELECT {self._EXECUTABLE_COLUMNS} FROM "executable" '
                'WHERE "name" = ? ORDER BY "id"',
                (name,),
            )
        )

    def get_or_create_executable(self, operating_system_version_id: int, name: str) -> DBStatus:
        row = self._row(
            'SELECT "id" FROM "executable" '
            'WHERE "name" = ? AND "operating_system_version_id" = ?',
            (str(name), operating_system_version_id),
        )
        if row is not None:
            return DBStatus(StatusKind.ALREADY_EXISTS, row[0])
        new_id = self._insert(
            'INSERT INTO "executable" ("name", "operating_system_version_id") VALUES (?, ?)',
            (str(name), operating_system_version_id),
        )
        return DBStatus(StatusKind.CREATED, new_id)

    def get_executables_with_entitlement_for_os_version(
        self, operating_system_version_id: int, entitlement_key: str
    ) -> list[Executable]:
        """Executables of one OS version holding an entitlement whose key contains the given key.

        Nothing is returned unless some entitlement has exactly that key.
        """
        key = str(entitlement_key)
        if self._row('SELECT 1 FROM "entitlement" WHERE "key" = ? LIMIT 1', (key,)) is None:
            return []
        rows = self._rows(
            'SELECT DISTINCT x."id", x."name", x."operating_system_version_id" '
            'FROM "executable" x '
            'LEFT JOIN "executable_entitlement" ee ON ee."executable_id" = x."id" '
            'LEFT JOIN "entitlement" e ON e."id" = ee."entitlement_id" '
            'WHERE x."operating_system_version_id" = ? '
            "AND e.\"key\" LIKE '%' || ? || '%' "
            'ORDER BY x."id"',
            (operating_system_version_id, key),
        )
        return self._executables(rows)

    # Operating system versions

    def get_operating_system_versions(self) -> list[OperatingSystemVersion]:
        rows = self._rows(
            'SELECT "id", "version", "operating_system_id" '
            'FROM "operating_system_version" ORDER BY "id"'
        )
        return [OperatingSystemVersion(*row) for row in rows]

    def get_or_create_operating_system_version(
        self, platform_name: str, version: str
    ) -> OperatingSystemVersion:
        """Find the version of the named platform, creating it when missing."""
        row = self._row(
            'SELECT v."id", v."version", v."operating_system_id" '
            'FROM "operating_system_version" v '
            'JOIN "operating_system" o ON o."id" = v."operating_system_id" '
            'WHERE v."version" = ? AND o."name" = ?',
            (version, platform_name),
        )
        if row is not None:
            return OperatingSystemVersion(*row)

        os_row = self._row(
            'SELECT "id" FROM "operating_system" WHERE "name" = ?', (platform_name,)
        )
        if os_row is None:
            raise NotFoundError("Operating system not found")
        new_id = self._insert(
            'INSERT INTO "operating_system_version" ("operating_system_id", "version") '
            "VALUES (?, ?)",
            (os_row[0], version),
        )
        log.info("Created new operating system version %s for %s", version, platform_name)
        return OperatingSystemVersion(new_id, version, os_row[0])

    def get_operating_system_version_by_id(self, version_id: int) -> OperatingSystemVersion:
        row = self._row(
            'SELECT "id", "version", "operating_system_id" '
            'FROM "operating_system_version" WHERE "id" = ?',
            (version_id,),
        )
        if row is None:
            raise NotFoundError("Operating system version not found")
        return OperatingSystemVersion(*row)

    def create_operating_system_version(self, operating_system_id: int, version: str) -> int:
        return self._insert(
            'INSERT INTO "operating_system_version" ("operating_system_id", "version") '
            "VALUES (?, ?)",
            (operating_system_id, version),
        )

    # Operating systems

    def get_operating_systems(self) -> list[OperatingSystem]:
        rows = self._rows('SELECT "id", "name" FROM "operating_system" ORDER BY "id"')
        return [OperatingSystem(row[0], OperatingSystemName.parse(row[1])) for row in rows]

    def get_operating_system_by_id(self, operating_system_id: int) -> OperatingSystem:
        row = self._row(
            'SELECT "id", "name" FROM "operating_system" WHERE "id" = ?',
            (operating_system_id,),
        )
        if row is None:
            raise NotFoundError(f"unknown operating system id {operating_system_id}")
        return OperatingSystem(row[0], OperatingSystemName.parse(row[1]))