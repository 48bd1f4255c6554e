from __future__ import annotations

from app.contexts.payments.domain.transfer import Recipient
from app.infrastructure.repositories.base import BaseRepository


class SupplierRepository(BaseRepository):
    def get_by_id(self, db, supplier_id: int) -> Recipient | None:
        row = db.execute(
            """
            SELECT id, name, pix_key, bank_data
            FROM suppliers
            WHERE id = ?
            LIMIT 1
            """,
            (supplier_id,),
        ).fetchone()
        if not row:
            return None
        return self.to_recipient(dict(row))

    def create(
        self,
        db,
        *,
        name: str,
        pix_key: str | None = None,
        bank_data: dict | None = None,
        email: str | None = None,
        tax_id: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO suppliers (name, email, tax_id, pix_key, bank_data)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (name, email, tax_id, pix_key, self.json_param(bank_data)),
        )
        return self.inserted_id(cursor)

    def to_recipient(self, row: dict) -> Recipient:
        return Recipient(
            id=int(row["id"]),
            name=row.get("name"),
            payment_key=row.get("pix_key"),
            bank_data=self.json_value(row.get("bank_data")),
        )
