from __future__ import annotations

from typing import Any, Dict

from app.infrastructure.repositories.base import BaseRepository


class AuditLogRepository(BaseRepository):
    def add(
        self,
        db,
        *,
        action: str,
        entity_type: str,
        entity_id: int | str,
        details: Dict[str, Any],
        panel_type: str = "system",
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO audit_logs (action, entity_type, entity_id, panel_type, details)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (action, entity_type, str(entity_id), panel_type, self.json_param(details)),
        )
        return self.inserted_id(cursor)

    def list_for_entity(self, db, *, entity_type: str, entity_id: int | str, limit: int = 120) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, action, entity_type, entity_id, panel_type, details, created_at
            FROM audit_logs
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (entity_type, str(entity_id), int(limit)),
        ).fetchall()
        entries = self.rows_to_dicts(rows)
        for entry in entries:
            entry["details"] = self.json_value(entry.get("details"))
        return entries

    def count(self, db) -> int:
        row = db.execute("SELECT COUNT(*) AS total FROM audit_logs").fetchone()
        return int(row["total"] if row else 0)
