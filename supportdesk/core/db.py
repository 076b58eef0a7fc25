"""Database helpers: psycopg connections and the Python migration runner.

Migrations live in ``supportdesk/migrations`` as Alembic-style modules with an
``upgrade()`` function that calls ``op.create_table`` / ``op.create_index``.
``ensure_schema`` runs them without an Alembic environment by binding ``op`` to
:class:`_PsycopgOperations`, which compiles the same calls with SQLAlchemy's
PostgreSQL dialect and executes them on a plain psycopg connection.
"""

from __future__ import annotations

import importlib
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Iterator, Sequence

import psycopg
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"
MIGRATIONS_TABLE = "supportdesk_migrations"
_MIGRATIONS_PACKAGE = "supportdesk.migrations"


def get_conn(database_url: str | None = None) -> psycopg.Connection:
    """Open a psycopg connection to ``database_url`` or ``DATABASE_URL``."""

    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not configured")
    return psycopg.connect(url)


class _PsycopgOperations:
    """The part of Alembic's ``op`` API our migrations use."""

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn
        self._dialect = postgresql.dialect()

    def create_table(
        self,
        name: str,
        *items: sa.Column | sa.Constraint,
        schema: str | None = None,
        **kwargs: Any,
    ) -> None:
        metadata = sa.MetaData(schema=schema)
        table = sa.Table(name, metadata, *items, **kwargs)
        _declare_fk_targets(metadata, table)
        self._run_ddl(sa.schema.CreateTable(table, if_not_exists=True))

    def drop_table(self, name: str, schema: str | None = None) -> None:
        table = sa.Table(name, sa.MetaData(schema=schema))
        self._run_ddl(sa.schema.DropTable(table, if_exists=True))

    def create_index(
        self,
        name: str,
        table_name: str,
        columns: Sequence[str],
        *,
        unique: bool = False,
        schema: str | None = None,
        **dialect_kw: Any,
    ) -> None:
        # Index DDL only needs column names; the stub table never reaches the database.
        table = sa.Table(
            table_name,
            sa.MetaData(schema=schema),
            *(sa.Column(column, sa.Text) for column in columns),
        )
        index = sa.Index(
            name,
            *(table.c[column] for column in columns),
            unique=unique,
            **{key: value for key, value in dialect_kw.items() if key.startswith("postgresql_")},
        )
        self._run_ddl(sa.schema.CreateIndex(index, if_not_exists=True))

    def drop_index(self, name: str, *, schema: str | None = None, **_: Any) -> None:
        preparer = self._dialect.identifier_preparer
        target = preparer.quote(name)
        if schema:
            target = f"{preparer.quote_schema(schema)}.{target}"
        self.execute(f"DROP INDEX IF EXISTS {target}")

    def execute(self, statement: str | sa.TextClause) -> None:
        with self._conn.cursor() as cur:
            cur.execute(str(statement))

    def _run_ddl(self, ddl: sa.schema.DDLElement) -> None:
        self.execute(str(ddl.compile(dialect=self._dialect)))


def _declare_fk_targets(metadata: sa.MetaData, table: sa.Table) -> None:
    """Add placeholder tables so foreign keys resolve when the DDL compiles."""

    for fk in table.foreign_keys:
        *schema_parts, target_table, target_column = fk.target_fullname.split(".")
        target_schema = schema_parts[-1] if schema_parts else metadata.schema
        key = f"{target_schema}.{target_table}" if target_schema else target_table
        if key not in metadata.tables:
            sa.Table(
                target_table,
                metadata,
                sa.Column(target_column, sa.BigInteger, primary_key=True),
                schema=target_schema,
            )


@dataclass(frozen=True)
class _Migration:
    id: str
    path: Path

    def load(self) -> ModuleType:
        return importlib.import_module(f"{_MIGRATIONS_PACKAGE}.{self.id}")


def _discover(migrations_dir: Path) -> list[_Migration]:
    if not migrations_dir.is_dir():
        return []
    return [
        _Migration(id=path.stem, path=path)
        for path in sorted(migrations_dir.glob("[0-9][0-9][0-9]_*.py"))
        if path.is_file()
    ]


def _applied_ids(conn: psycopg.Connection) -> set[str]:
    with conn.cursor() as cur:
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                id TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        cur.execute(f"SELECT id FROM {MIGRATIONS_TABLE}")
        ids = {row[0] for row in cur.fetchall()}
    conn.commit()
    return ids


@contextmanager
def _bound_op(module: ModuleType, operations: _PsycopgOperations) -> Iterator[None]:
    previous = getattr(module, "op", None)
    module.op = operations
    try:
        yield
    finally:
        if previous is not None:
            module.op = previous


def _run_python_migrations(
    conn: psycopg.Connection,
    migrations_dir: Path | None = None,
) -> list[str]:
    """Apply pending migrations in filename order and return their ids.

    Each migration commits on its own together with its bookkeeping row; a
    failure rolls back that migration only and is re-raised.
    """

    done = _applied_ids(conn)
    pending = [m for m in _discover(migrations_dir or MIGRATIONS_DIR) if m.id not in done]

    applied: list[str] = []
    for migration in pending:
        module = migration.load()
        upgrade = getattr(module, "upgrade", None)
        if upgrade is None:
            logger.warning("Migration %s has no upgrade(); skipping", migration.id)
            continue
        try:
            with _bound_op(module, _PsycopgOperations(conn)):
                upgrade()
            with conn.cursor() as cur:
                cur.execute(
                    f"INSERT INTO {MIGRATIONS_TABLE} (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
                    (migration.id,),
                )
        except Exception:
            conn.rollback()
            logger.exception("Migration %s failed", migration.id)
            raise
        conn.commit()
        applied.append(migration.id)
        logger.info("Applied migration %s", migration.id)
    return applied


def ensure_schema(conn: psycopg.Connection, migrations_dir: Path | None = None) -> list[str]:
    """Apply any pending migrations; safe to call on every start-up."""

    applied = _run_python_migrations(conn, migrations_dir)
    conn.commit()
    return applied


__all__ = ["MIGRATIONS_TABLE", "ensure_schema", "get_conn"]
