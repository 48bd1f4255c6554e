"""Escrow payments schema baseline from app.db

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from typing import Iterable, Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from app.db import _convert_qmark_to_pg, _init_db_postgres, _init_db_sqlite, _split_sql_statements


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


class _AlembicDbAdapter:
    """Gives the schema builders in app.db the execute() surface they expect."""

    def __init__(self, connection: Connection, backend: str):
        self._connection = connection
        self.backend = backend

    def execute(self, sql: str, params: Iterable | None = None):
        if params is None:
            return self._connection.exec_driver_sql(sql)
        statement = _convert_qmark_to_pg(sql) if self.backend == "postgres" else sql
        return self._connection.exec_driver_sql(statement, tuple(params))

    def executescript(self, sql: str):
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)


def _resolve_backend(connection: Connection) -> str:
    dialect = (connection.dialect.name or "").lower()
    if dialect.startswith("postgres"):
        return "postgres"
    return "sqlite"


def upgrade() -> None:
    connection = op.get_bind()
    adapter = _AlembicDbAdapter(connection, _resolve_backend(connection))

    if adapter.backend == "postgres":
        _init_db_postgres(adapter)
        return

    _init_db_sqlite(adapter)


def downgrade() -> None:
    tables = [
        "webhook_config",
        "audit_logs",
        "payments",
        "supplier_transfers",
        "quotes",
        "suppliers",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table}")
