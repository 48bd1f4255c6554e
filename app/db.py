import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._in_transaction = False

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def row_lock_clause(self, table_alias: str) -> str:
        # SQLite serializes writers through BEGIN IMMEDIATE instead.
        if self.backend == "postgres":
            return f" FOR UPDATE OF {table_alias}"
        return ""

    @contextlib.contextmanager
    def transaction(self):
        """Run the block as one write transaction, rolling back on any error."""
        if self._in_transaction:
            raise RuntimeError("Transacao aninhada nao suportada.")
        self._in_transaction = True
        try:
            if self.backend == "postgres":
                self._conn.autocommit = False
                try:
                    yield self
                    self._conn.commit()
                except BaseException:
                    self._conn.rollback()
                    raise
                finally:
                    self._conn.autocommit = True
            else:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self
                    self._conn.execute("COMMIT")
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
        finally:
            self._in_transaction = False

    def commit(self):
        self._conn.commit()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_double = False
    for ch in sql:
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == ";" and not in_single and not in_double:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: writes that need atomicity go through Database.transaction().
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


def _init_db_sqlite(db: Database):
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS suppliers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT,
            tax_id TEXT,
            pix_key TEXT,
            bank_data TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quotes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT,
            local_code TEXT,
            status TEXT NOT NULL DEFAULT 'approved',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS supplier_transfers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            supplier_id INTEGER,
            amount REAL NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','processing','failed')
            ),
            transfer_method TEXT NOT NULL DEFAULT 'pix' CHECK (
                transfer_method IN ('pix','ted')
            ),
            asaas_transfer_id TEXT UNIQUE,
            pix_key TEXT,
            notes TEXT,
            error_message TEXT,
            processed_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            quote_id INTEGER,
            supplier_id INTEGER,
            amount REAL NOT NULL,
            status TEXT NOT NULL DEFAULT 'escrow' CHECK (
                status IN ('escrow','releasing','processing','released','failed','pending_approval')
            ),
            transfer_external_id TEXT UNIQUE,
            supplier_pix_key TEXT,
            notes TEXT,
            released_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            panel_type TEXT NOT NULL DEFAULT 'system',
            details TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS webhook_config (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            enabled INTEGER NOT NULL DEFAULT 0,
            auth_token TEXT,
            notification_email TEXT,
            max_auto_approve_amount REAL NOT NULL DEFAULT 50000.0,
            validate_pix_key INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute("CREATE INDEX IF NOT EXISTS idx_supplier_transfers_supplier ON supplier_transfers (supplier_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_payments_quote ON payments (quote_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_audit_logs_entity ON audit_logs (entity_type, entity_id)")


def _init_db_postgres(db: Database) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS suppliers (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT,
            tax_id TEXT,
            pix_key TEXT,
            bank_data JSONB,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quotes (
            id SERIAL PRIMARY KEY,
            title TEXT,
            local_code TEXT,
            status TEXT NOT NULL DEFAULT 'approved',
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS supplier_transfers (
            id SERIAL PRIMARY KEY,
            supplier_id INTEGER,
            amount NUMERIC(14, 2) NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','processing','failed')
            ),
            transfer_method TEXT NOT NULL DEFAULT 'pix' CHECK (
                transfer_method IN ('pix','ted')
            ),
            asaas_transfer_id TEXT UNIQUE,
            pix_key TEXT,
            notes TEXT,
            error_message TEXT,
            processed_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id SERIAL PRIMARY KEY,
            quote_id INTEGER,
            supplier_id INTEGER,
            amount NUMERIC(14, 2) NOT NULL,
            status TEXT NOT NULL DEFAULT 'escrow' CHECK (
                status IN ('escrow','releasing','processing','released','failed','pending_approval')
            ),
            transfer_external_id TEXT UNIQUE,
            supplier_pix_key TEXT,
            notes TEXT,
            released_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id SERIAL PRIMARY KEY,
            action TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            panel_type TEXT NOT NULL DEFAULT 'system',
            details JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS webhook_config (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            enabled BOOLEAN NOT NULL DEFAULT FALSE,
            auth_token TEXT,
            notification_email TEXT,
            max_auto_approve_amount NUMERIC(14, 2) NOT NULL DEFAULT 50000.00,
            validate_pix_key BOOLEAN NOT NULL DEFAULT TRUE,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute("CREATE INDEX IF NOT EXISTS idx_supplier_transfers_supplier ON supplier_transfers (supplier_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_payments_quote ON payments (quote_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_audit_logs_entity ON audit_logs (entity_type, entity_id)")
