from __future__ import annotations

from decimal import Decimal

from app.contexts.payments.domain.errors import ConcurrentTransitionError
from app.contexts.payments.domain.transfer import Recipient, TransferRecord, TransferShape, to_decimal
from app.contexts.payments.infrastructure.repositories.supplier_repository import SupplierRepository
from app.infrastructure.repositories.base import BaseRepository


def _append_note(current: str | None, note: str | None) -> str | None:
    if not note:
        return current
    return f"{current or ''}\n{note}".strip("\n")


class TransferRepository(BaseRepository):
    """Reads and writes payouts stored either as supplier transfers or as escrow payments."""

    def __init__(self, supplier_repository: SupplierRepository | None = None) -> None:
        self._suppliers = supplier_repository or SupplierRepository()

    def find_by_external_id(self, db, external_transfer_id: str, *, for_update: bool = False) -> TransferRecord | None:
        record = self._find_dedicated(db, external_transfer_id, for_update=for_update)
        if record is not None:
            return record
        return self._find_generic(db, external_transfer_id, for_update=for_update)

    def _find_dedicated(self, db, external_transfer_id: str, *, for_update: bool) -> TransferRecord | None:
        lock = db.row_lock_clause("st") if for_update else ""
        row = db.execute(
            f"""
            SELECT st.id, st.supplier_id, st.amount, st.status, st.transfer_method,
                   st.asaas_transfer_id, st.notes,
                   s.id AS recipient_row_id, s.name AS recipient_name,
                   s.pix_key AS recipient_pix_key, s.bank_data AS recipient_bank_data
            FROM supplier_transfers st
            LEFT JOIN suppliers s ON s.id = st.supplier_id
            WHERE st.asaas_transfer_id = ?
            LIMIT 1{lock}
            """,
            (external_transfer_id,),
        ).fetchone()
        if not row:
            return None
        data = dict(row)
        return TransferRecord(
            id=int(data["id"]),
            shape=TransferShape.DEDICATED_TRANSFER,
            external_transfer_id=str(data["asaas_transfer_id"]),
            amount=to_decimal(data.get("amount"), Decimal("0")),
            status=str(data.get("status") or ""),
            recipient_id=data.get("supplier_id"),
            recipient=self._recipient_from_row(data),
            transfer_method=data.get("transfer_method"),
            notes=data.get("notes"),
        )

    def _find_generic(self, db, external_transfer_id: str, *, for_update: bool) -> TransferRecord | None:
        lock = db.row_lock_clause("p") if for_update else ""
        row = db.execute(
            f"""
            SELECT p.id, p.quote_id, p.supplier_id, p.amount, p.status,
                   p.transfer_external_id, p.notes,
                   s.id AS recipient_row_id, s.name AS recipient_name,
                   s.pix_key AS recipient_pix_key, s.bank_data AS recipient_bank_data
            FROM payments p
            LEFT JOIN suppliers s ON s.id = p.supplier_id
            WHERE p.transfer_external_id = ?
            LIMIT 1{lock}
            """,
            (external_transfer_id,),
        ).fetchone()
        if not row:
            return None
        data = dict(row)
        return TransferRecord(
            id=int(data["id"]),
            shape=TransferShape.GENERIC_PAYMENT,
            external_transfer_id=str(data["transfer_external_id"]),
            amount=to_decimal(data.get("amount"), Decimal("0")),
            status=str(data.get("status") or ""),
            recipient_id=data.get("supplier_id"),
            recipient=self._recipient_from_row(data),
            linked_quote_id=data.get("quote_id"),
            notes=data.get("notes"),
        )

    def _recipient_from_row(self, data: dict) -> Recipient | None:
        if data.get("recipient_row_id") is None:
            return None
        return self._suppliers.to_recipient(
            {
                "id": data["recipient_row_id"],
                "name": data.get("recipient_name"),
                "pix_key": data.get("recipient_pix_key"),
                "bank_data": data.get("recipient_bank_data"),
            }
        )

    def transition(
        self,
        db,
        record: TransferRecord,
        *,
        outcome: str,
        error_message: str | None = None,
        note: str | None = None,
    ) -> str:
        """Move the record to the shape's status for ``outcome``; compare-and-set on the current status."""
        to_status = record.shape.target_status(outcome)
        notes = _append_note(record.notes, note)

        if record.shape is TransferShape.DEDICATED_TRANSFER:
            if outcome == "approved":
                sql = """
                    UPDATE supplier_transfers
                    SET status = ?, processed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = ?
                """
                params = (to_status, record.id, record.status)
            elif outcome == "deferred":
                sql = """
                    UPDATE supplier_transfers
                    SET status = ?, error_message = ?, notes = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = ?
                """
                params = (to_status, error_message, notes, record.id, record.status)
            else:
                sql = """
                    UPDATE supplier_transfers
                    SET status = ?, error_message = ?, processed_at = CURRENT_TIMESTAMP,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = ?
                """
                params = (to_status, error_message, record.id, record.status)
        else:
            if outcome == "approved":
                sql = """
                    UPDATE payments
                    SET status = ?, released_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = ?
                """
                params = (to_status, record.id, record.status)
            else:
                # Payments carry no error column; the reason goes to the notes.
                sql = """
                    UPDATE payments
                    SET status = ?, notes = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = ?
                """
                params = (to_status, _append_note(notes, error_message), record.id, record.status)

        cursor = db.execute(sql, params)
        if int(cursor.rowcount or 0) != 1:
            raise ConcurrentTransitionError(
                f"{record.shape.table} {record.id} saiu do status {record.status} durante a autorizacao"
            )
        return to_status

    def get_row(self, db, shape: TransferShape, record_id: int) -> dict | None:
        row = db.execute(
            f"SELECT * FROM {shape.table} WHERE id = ? LIMIT 1",
            (record_id,),
        ).fetchone()
        return dict(row) if row else None

    def create_supplier_transfer(
        self,
        db,
        *,
        supplier_id: int | None,
        amount: Decimal | float,
        external_transfer_id: str,
        status: str = "pending",
        transfer_method: str = "pix",
        pix_key: str | None = None,
        notes: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO supplier_transfers (supplier_id, amount, status, transfer_method, asaas_transfer_id, pix_key, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (supplier_id, self.money_param(db, amount), status, transfer_method, external_transfer_id, pix_key, notes),
        )
        return self.inserted_id(cursor)

    def create_payment(
        self,
        db,
        *,
        supplier_id: int | None,
        amount: Decimal | float,
        external_transfer_id: str,
        quote_id: int | None = None,
        status: str = "escrow",
        supplier_pix_key: str | None = None,
        notes: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO payments (quote_id, supplier_id, amount, status, transfer_external_id, supplier_pix_key, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (quote_id, supplier_id, self.money_param(db, amount), status, external_transfer_id, supplier_pix_key, notes),
        )
        return self.inserted_id(cursor)
