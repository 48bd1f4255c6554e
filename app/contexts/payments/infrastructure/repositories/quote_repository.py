from __future__ import annotations

from app.infrastructure.repositories.base import BaseRepository


class QuoteRepository(BaseRepository):
    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE id = ?
            LIMIT 1
            """,
            (quote_id,),
        ).fetchone()
        return dict(row) if row else None

    def create(self, db, *, title: str | None, status: str = "approved", local_code: str | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotes (title, local_code, status)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (title, local_code, status),
        )
        return self.inserted_id(cursor)

    def update_status(self, db, quote_id: int, status: str) -> None:
        db.execute(
            """
            UPDATE quotes
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (status, quote_id),
        )
