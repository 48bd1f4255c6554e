from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict

from app.contexts.payments.domain.errors import MalformedWebhookError


APPROVED = "APPROVED"
REJECTED = "REJECTED"

DEFAULT_MAX_AUTO_APPROVE_AMOUNT = Decimal("50000.00")
AMOUNT_TOLERANCE = Decimal("0.01")


def to_decimal(value: object | None, default: Decimal | None = None) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not amount.is_finite():
        return default
    return amount


class TransferShape(Enum):
    """The two record kinds a payout can live in, each with its own status vocabulary."""

    DEDICATED_TRANSFER = "supplier_transfers"
    GENERIC_PAYMENT = "payments"

    @property
    def table(self) -> str:
        return self.value

    @property
    def valid_statuses(self) -> frozenset[str]:
        return _SHAPE_RULES[self]["valid"]

    @property
    def approved_status(self) -> str:
        return _SHAPE_RULES[self]["approved"]

    @property
    def deferred_status(self) -> str:
        return _SHAPE_RULES[self]["deferred"]

    @property
    def failed_status(self) -> str:
        return "failed"

    def target_status(self, outcome: str) -> str:
        if outcome == "approved":
            return self.approved_status
        if outcome == "deferred":
            return self.deferred_status
        if outcome == "failed":
            return self.failed_status
        raise ValueError(f"outcome desconhecido: {outcome}")


_SHAPE_RULES: Dict[TransferShape, Dict[str, Any]] = {
    TransferShape.DEDICATED_TRANSFER: {
        "valid": frozenset({"pending"}),
        "approved": "processing",
        "deferred": "pending",
    },
    TransferShape.GENERIC_PAYMENT: {
        "valid": frozenset({"escrow", "releasing"}),
        "approved": "released",
        "deferred": "pending_approval",
    },
}


@dataclass(frozen=True)
class Recipient:
    id: int
    name: str | None
    payment_key: str | None = None
    bank_data: Dict[str, Any] = field(default_factory=dict)

    def expected_pix_key(self) -> str | None:
        key = str(self.payment_key or "").strip() or str(self.bank_data.get("pix_key") or "").strip()
        return key or None


@dataclass(frozen=True)
class TransferRecord:
    id: int
    shape: TransferShape
    external_transfer_id: str
    amount: Decimal
    status: str
    recipient_id: int | None
    recipient: Recipient | None = None
    linked_quote_id: int | None = None
    transfer_method: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class WebhookNotification:
    transfer_id: str
    value: Decimal
    pix_key: str | None = None
    bank_account: Dict[str, Any] | None = None

    @classmethod
    def parse(cls, raw_body: bytes | str | None) -> "WebhookNotification":
        try:
            payload = json.loads(raw_body or b"", parse_float=Decimal)
        except (TypeError, ValueError) as exc:
            raise MalformedWebhookError(details=f"json invalido: {exc}") from exc

        transfer = payload.get("transfer") if isinstance(payload, dict) else None
        if not isinstance(transfer, dict):
            raise MalformedWebhookError(details="campo transfer ausente")
        transfer_id = str(transfer.get("id") or "").strip()
        if not transfer_id:
            raise MalformedWebhookError(details="transfer.id ausente")

        # Unparseable values fall through as zero and fail the positive-amount gate.
        value = to_decimal(transfer.get("value"), Decimal("0"))
        pix_key = str(transfer.get("pixKey") or "").strip() or None
        bank_account = transfer.get("bankAccount")
        return cls(
            transfer_id=transfer_id,
            value=value,
            pix_key=pix_key,
            bank_account=bank_account if isinstance(bank_account, dict) else None,
        )


@dataclass(frozen=True)
class WebhookConfig:
    enabled: bool = False
    auth_token: str | None = None
    max_auto_approve_amount: Decimal = DEFAULT_MAX_AUTO_APPROVE_AMOUNT
    validate_pix_key: bool = True
    notification_email: str | None = None


@dataclass(frozen=True)
class WebhookRequest:
    raw_body: bytes | str | None
    auth_token: str | None = None


def _amounts_match(expected: Decimal, received: Decimal) -> bool:
    try:
        return abs(expected - received) < AMOUNT_TOLERANCE
    except ArithmeticError:
        # Values past the decimal context range (e.g. 1e999999999) can never match.
        return False


@dataclass(frozen=True)
class GateChecks:
    amount_matches: bool
    status_valid: bool
    recipient_present: bool
    amount_positive: bool

    @classmethod
    def evaluate(cls, record: TransferRecord, notification: WebhookNotification) -> "GateChecks":
        return cls(
            amount_matches=_amounts_match(record.amount, notification.value),
            status_valid=record.status in record.shape.valid_statuses,
            recipient_present=record.recipient is not None,
            amount_positive=notification.value > 0,
        )

    @property
    def all_passed(self) -> bool:
        return all(self.as_dict().values())

    def failed_checks(self) -> list[str]:
        return [name for name, passed in self.as_dict().items() if not passed]

    def as_dict(self) -> Dict[str, bool]:
        return {
            "amount_matches": self.amount_matches,
            "status_valid": self.status_valid,
            "recipient_present": self.recipient_present,
            "amount_positive": self.amount_positive,
        }


@dataclass(frozen=True)
class ApprovalProof:
    checks: GateChecks
    within_limit: bool
    pix_key_verified: bool

    @property
    def holds(self) -> bool:
        return self.checks.all_passed and self.within_limit and self.pix_key_verified


@dataclass(frozen=True)
class AuthorizationDecision:
    status: str
    message: str
    http_status: int = 200
    reason: str = ""
    transfer_status: str | None = None
    error: str | None = None
    proof: ApprovalProof | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.status not in (APPROVED, REJECTED):
            raise ValueError(f"status de decisao invalido: {self.status}")
        if self.status == APPROVED and (self.proof is None or not self.proof.holds):
            raise ValueError("aprovacao exige todas as validacoes satisfeitas")

    @classmethod
    def approved(cls, proof: ApprovalProof, *, message: str, transfer_status: str) -> "AuthorizationDecision":
        return cls(
            status=APPROVED,
            message=message,
            http_status=200,
            reason="approved",
            transfer_status=transfer_status,
            proof=proof,
        )

    @classmethod
    def rejected(
        cls,
        *,
        message: str,
        http_status: int = 200,
        reason: str,
        transfer_status: str | None = None,
        error: str | None = None,
    ) -> "AuthorizationDecision":
        return cls(
            status=REJECTED,
            message=message,
            http_status=http_status,
            reason=reason,
            transfer_status=transfer_status,
            error=error,
        )

    @property
    def is_approved(self) -> bool:
        return self.status == APPROVED

    def to_response_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.error:
            payload["error"] = self.error
        return payload
