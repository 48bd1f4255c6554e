from __future__ import annotations

from typing import Any, Dict

from app.ui_strings import error_message


class TransferRejection(Exception):
    """A gate refused the transfer. Translated into a REJECTED decision, never raised past the engine."""

    default_reason = "rejected"
    default_message_key = "transfer_validation_failed"
    default_http_status = 200
    # "failed" / "deferred" when the transfer record must be updated, None otherwise.
    outcome: str | None = None
    audit_action: str | None = None
    # Short marker appended to the record notes next to the error text.
    record_note_key: str | None = None

    def __init__(
        self,
        details: str | None = None,
        *,
        message: str | None = None,
        note: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.reason = self.default_reason
        self.http_status = int(self.default_http_status)
        self.message = message or error_message(self.default_message_key)
        self.details = (details or "").strip() or None
        self.note = note
        self.payload = dict(payload or {})
        super().__init__(self.details or self.reason)


class WebhookDisabledError(TransferRejection):
    default_reason = "webhook_disabled"
    default_message_key = "webhook_disabled"
    default_http_status = 403


class WebhookAuthError(TransferRejection):
    default_reason = "unauthorized"
    default_message_key = "webhook_unauthorized"
    default_http_status = 401


class MalformedWebhookError(TransferRejection):
    default_reason = "malformed_payload"
    default_message_key = "payload_invalid"
    default_http_status = 400


class UnknownTransferError(TransferRejection):
    default_reason = "transfer_not_found"
    default_message_key = "transfer_not_found"


class TransferValidationFailure(TransferRejection):
    default_reason = "validation_failed"
    default_message_key = "transfer_validation_failed"
    outcome = "failed"
    audit_action = "TRANSFER_AUTO_REJECTED"


class TransferPolicyDeferral(TransferRejection):
    default_reason = "amount_above_limit"
    default_message_key = "transfer_amount_above_limit"
    outcome = "deferred"
    audit_action = "TRANSFER_DEFERRED"
    record_note_key = "amount_above_limit_short"


class PixKeyMismatchError(TransferRejection):
    default_reason = "pix_key_mismatch"
    default_message_key = "transfer_bank_data_mismatch"
    outcome = "failed"
    audit_action = "TRANSFER_AUTO_REJECTED"


class ConcurrentTransitionError(RuntimeError):
    """The transfer changed status between lookup and update."""


class AuthorizationTimeout(TimeoutError):
    pass
