"""Database schema for the entitlement store, applied as ordered migrations."""

from __future__ import annotations

import argparse
import os
import sqlite3
import sys
import time
from contextlib import closing
from dataclasses import dataclass
from typing import Sequence

_TRACKING_TABLE = "seaql_migrations"

_KNOWN_OPERATING_SYSTEMS = ("ios", "macos", "watchos", "tvos")


@dataclass(frozen=True)
class Migration:
    """One schema step: statements to run forward and tables to drop backward."""

    name: str
    statements: tuple[str, ...]
    drop_tables: tuple[str, ...]
    seed: tuple[tuple[str, tuple], ...] = ()

    def up(self, connection: sqlite3.Connection) -> None:
        """Create this step's tables and insert its seed rows."""
        for statement in self.statements:
            connection.execute(statement)
        for sql, params in self.seed:
            connection.execute(sql, params)

    def down(self, connection: sqlite3.Connection) -> None:
        """Drop the tables this step removes on rollback."""
        for table in self.drop_tables:
            connection.execute(f'DROP TABLE "{table}"')


_EXECUTABLE_ENTITLEMENT_TABLE = """
CREATE TABLE IF NOT EXISTS "executable_entitlement" (
    "executable_id" INTEGER NOT NULL,
    "entitlement_id" INTEGER NOT NULL,
    PRIMARY KEY ("executable_id", "entitlement_id"),
    FOREIGN KEY ("executable_id") REFERENCES "executable" ("id"),
    FOREIGN KEY ("entitlement_id") REFERENCES "entitlement" ("id")
)
"""

MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        name="m1_operating_system",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS "operating_system" (
                "id" INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                "name" VARCHAR NOT NULL UNIQUE
            )
            """,
        ),
        drop_tables=("operating_system",),
        seed=tuple(
            ('INSERT INTO "operating_system" ("name") VALUES (?) '
             'ON CONFLICT ("name") DO NOTHING', (name,))
            for name in _KNOWN_OPERATING_SYSTEMS
        ),
    ),
    Migration(
        name="m2_operating_system_version",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS "operating_system_version" (
                "id" INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                "version" VARCHAR NOT NULL,
                "operating_system_id" INTEGER NOT NULL,
                UNIQUE ("version", "operating_system_id"),
                FOREIGN KEY ("operating_system_id")
                    REFERENCES "operating_system" ("id")
            )
            """,
        ),
        drop_tables=("operating_system_version",),
    ),
    Migration(
        name="m3_executable",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS "executable" (
                "id" INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                "name" VARCHAR NOT NULL,
                "operating_system_version_id" INTEGER NOT NULL,
                UNIQUE ("name", "operating_system_version_id"),
                FOREIGN KEY ("operating_system_version_id")
                    REFERENCES "operating_system_version" ("id")
            )
            """,
        ),
        drop_tables=("executable",),
    ),
    Migration(
        name="m4_entitlement",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS "entitlement" (
                "id" INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                "key" VARCHAR NOT NULL,
                "value" VARCHAR NOT NULL
            )
            """,
            _EXECUTABLE_ENTITLEMENT_TABLE,
        ),
        drop_tables=("entitlement",),
    ),
    Migration(
        name="m5_executable_entitlement",
        statements=(_EXECUTABLE_ENTITLEMENT_TABLE,),
        drop_tables=("executable_entitlement",),
    ),
)

_BY_NAME = {migration.name: migration for migration in MIGRATIONS}


def _ensure_tracking_table(connection: sqlite3.Connection) -> None:
    connection.execute(
        f'CREATE TABLE IF NOT EXISTS "{_TRACKING_TABLE}" ('
        '"version" VARCHAR NOT NULL PRIMARY KEY, '
        '"applied_at" BIGINT NOT NULL)'
    )


def applied_migrations(connection: sqlite3.Connection) -> list[str]:
    """Names of the migrations recorded as applied, oldest first."""
    _ensure_tracking_table(connection)
    rows = connection.execute(
        f'SELECT "version" FROM "{_TRACKING_TABLE}" ORDER BY "version"'
    ).fetchall()
    names = [row[0] for row in rows]
    for name in names:
        if name not in _BY_NAME:
            raise ValueError(f"Migration file of version '{name}' is missing")
    return names


def apply_migrations(
    connection: sqlite3.Connection, steps: int | None = None
) -> list[str]:
    """Apply pending migrations in order, at most ``steps`` of them."""
    done = set(applied_migrations(connection))
    pending = [m for m in MIGRATIONS if m.name not in done]
    if steps is not None:
        pending = pending[:steps]
    applied = []
    for migration in pending:
        with connection:
            migration.up(connection)
            connection.execute(
                f'INSERT INTO "{_TRACKING_TABLE}" ("version", "applied_at") '
                "VALUES (?, ?)",
                (migration.name, int(time.time())),
            )
        applied.append(migration.name)
    return applied


def revert_migrations(
    connection: sqlite3.Connection, steps: int | None = None
) -> list[str]:
    """Roll back applied migrations, newest first; all of them when ``steps`` is None."""
    done = applied_migrations(connection)
    to_revert = list(reversed(done))
    if steps is not None:
        to_revert = to_revert[:steps]
    reverted = []
    for name in to_revert:
        with connection:
            _BY_NAME[name].down(connection)
            connection.execute(
                f'DELETE FROM "{_TRACKING_TABLE}" WHERE "version" = ?', (name,)
            )
        reverted.append(name)
    return reverted


def _drop_all_tables(connection: sqlite3.Connection) -> None:
    tables = [
        row[0]
        for row in connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%'"
        )
    ]
    connection.execute("PRAGMA foreign_keys = OFF")
    try:
        with connection:
            for table in tables:
                connection.execute(f'DROP TABLE "{table}"')
    finally:
        connection.execute("PRAGMA foreign_keys = ON")


def _database_path(url: str) -> str:
    path = url
    if path.startswith("sqlite:"):
        path = path[len("sqlite:"):]
        if path.startswith("//"):
            path = path[2:]
    return path.split("?", 1)[0]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the database schema.")
    parser.add_argument(
        "-u",
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="sqlite database URL or path (default: $DATABASE_URL)",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    up = commands.add_parser("up", help="apply pending migrations")
    up.add_argument("-n", "--num", type=int, default=None)
    down = commands.add_parser("down", help="roll back applied migrations")
    down.add_argument("-n", "--num", type=int, default=1)
    commands.add_parser("status", help="show the state of every migration")
    commands.add_parser("fresh", help="drop every table and apply all migrations")
    commands.add_parser("refresh", help="roll back and reapply all migrations")
    commands.add_parser("reset", help="roll back all migrations")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the schema management command line."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.database_url:
        parser.error("a database URL is required (-u or DATABASE_URL)")

    try:
        with closing(sqlite3.connect(_database_path(args.database_url))) as conn:
            conn.execute("PRAGMA foreign_keys = ON")
            if args.command == "up":
                names = apply_migrations(conn, args.num)
                action = "Applying"
            elif args.command == "down":
                names = revert_migrations(conn, args.num)
                action = "Rolling back"
            elif args.command == "reset":
                names = revert_migrations(conn)
                action = "Rolling back"
            elif args.command == "refresh":
                revert_migrations(conn)
                names = apply_migrations(conn)
                action = "Applying"
            elif args.command == "fresh":
                _drop_all_tables(conn)
                names = apply_migrations(conn)
                action = "Applying"
            else:
                done = set(applied_migrations(conn))
                for migration in MIGRATIONS:
                    state = "Applied" if migration.name in done else "Pending"
                    print(f"Migration '{migration.name}'... {state}")
                return 0
            if not names:
                print("No migrations to run")
            for name in names:
                print(f"{action} migration '{name}'")
    except (sqlite3.Error, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0