from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Iterable


class BaseRepository:
    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def inserted_id(cursor) -> int:
        # Drain the cursor so SQLite finishes the RETURNING statement.
        row = cursor.fetchall()[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def json_value(value: Any) -> dict:
        # SQLite keeps JSON as text, PostgreSQL JSONB comes back already decoded.
        if value is None:
            return {}
        if isinstance(value, dict):
            return dict(value)
        try:
            decoded = json.loads(value)
        except (TypeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}

    @staticmethod
    def json_param(value: dict | None) -> str:
        return json.dumps(value or {}, ensure_ascii=False, separators=(",", ":"), default=str)

    @staticmethod
    def money_param(db, amount: Decimal | float | int) -> Decimal | float:
        # sqlite3 has no Decimal adapter.
        if db.backend == "postgres":
            return Decimal(str(amount))
        return float(amount)
