from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict

from app.contexts.payments.domain.errors import (
    AuthorizationTimeout,
    PixKeyMismatchError,
    TransferPolicyDeferral,
    TransferRejection,
    TransferValidationFailure,
    UnknownTransferError,
    WebhookAuthError,
    WebhookDisabledError,
)
from app.contexts.payments.domain.transfer import (
    ApprovalProof,
    AuthorizationDecision,
    GateChecks,
    TransferRecord,
    TransferShape,
    WebhookConfig,
    WebhookNotification,
    WebhookRequest,
)
from app.contexts.payments.infrastructure.repositories.audit_log_repository import AuditLogRepository
from app.contexts.payments.infrastructure.repositories.quote_repository import QuoteRepository
from app.contexts.payments.infrastructure.repositories.transfer_repository import TransferRepository
from app.observability import observe_transfer_authorization
from app.security import tokens_match
from app.ui_strings import error_message, note_message, success_message


DEFAULT_TIMEOUT_SECONDS = 10.0


def format_limit(amount: Decimal) -> str:
    return f"{amount.quantize(Decimal('0.01')):f}"


def _normalize_key(value: str | None) -> str:
    return str(value or "").strip().lower()


class TransferAuthorizationService:
    """Decides whether a payout announced by the payment network may proceed.

    Every delivery runs the gates in a fixed order: configuration, token,
    payload shape, record lookup, record checks, auto-approve ceiling and
    PIX key match. Business refusals come back as REJECTED decisions with
    the record already moved to its terminal status; unexpected errors roll
    the transaction back and surface as REJECTED with HTTP 500.
    """

    def __init__(
        self,
        transfer_repository: TransferRepository | None = None,
        quote_repository: QuoteRepository | None = None,
        audit_repository: AuditLogRepository | None = None,
        *,
        audit_all_transitions: bool = False,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transfers = transfer_repository or TransferRepository()
        self._quotes = quote_repository or QuoteRepository()
        self._audit = audit_repository or AuditLogRepository()
        self._audit_all_transitions = bool(audit_all_transitions)
        self._timeout_seconds = float(timeout_seconds)
        self._clock = clock
        self._logger = logging.getLogger("app")

    def authorize(self, db, request: WebhookRequest, config: WebhookConfig | None) -> AuthorizationDecision:
        deadline = self._clock() + self._timeout_seconds
        try:
            decision = self._authorize(db, request, config, deadline)
        except TransferRejection as rejection:
            # Gates that refuse before any record is touched.
            self._log_rejection(rejection)
            decision = AuthorizationDecision.rejected(
                message=rejection.message,
                http_status=rejection.http_status,
                reason=rejection.reason,
            )
        except Exception as exc:
            self._logger.exception(
                "transfer_authorization_error",
                extra={"error_type": type(exc).__name__},
            )
            return self.reject_internal_error(exc)
        observe_transfer_authorization(decision.status, decision.reason)
        return decision

    def reject_internal_error(self, exc: BaseException) -> AuthorizationDecision:
        """Fail closed: any error outside the business gates rejects the transfer."""
        decision = AuthorizationDecision.rejected(
            message=error_message("transfer_processing_error"),
            http_status=500,
            reason="timeout" if isinstance(exc, AuthorizationTimeout) else "internal_error",
            error=str(exc) or type(exc).__name__,
        )
        observe_transfer_authorization(decision.status, decision.reason)
        return decision

    def _authorize(
        self,
        db,
        request: WebhookRequest,
        config: WebhookConfig | None,
        deadline: float,
    ) -> AuthorizationDecision:
        if config is None or not config.enabled:
            raise WebhookDisabledError()
        if config.auth_token and not tokens_match(config.auth_token, request.auth_token):
            raise WebhookAuthError()

        notification = WebhookNotification.parse(request.raw_body)
        self._check_deadline(deadline)

        with db.transaction():
            record = self._transfers.find_by_external_id(db, notification.transfer_id, for_update=True)
            if record is None:
                raise UnknownTransferError(
                    details=notification.transfer_id,
                    payload={"transfer_id": notification.transfer_id},
                )
            self._check_deadline(deadline)

            try:
                proof = self._run_gates(record, notification, config)
            except TransferRejection as rejection:
                return self._reject_record(db, record, notification, rejection, deadline)
            return self._approve_record(db, record, notification, proof, deadline)

    def _run_gates(
        self,
        record: TransferRecord,
        notification: WebhookNotification,
        config: WebhookConfig,
    ) -> ApprovalProof:
        checks = GateChecks.evaluate(record, notification)
        if not checks.all_passed:
            raise TransferValidationFailure(
                details=",".join(checks.failed_checks()),
                note=note_message("validation_failed"),
                payload={"validations": checks.as_dict()},
            )

        limit = config.max_auto_approve_amount
        if notification.value > limit:
            limit_text = format_limit(limit)
            raise TransferPolicyDeferral(
                details=f"{notification.value} > {limit_text}",
                message=error_message("transfer_amount_above_limit").format(limit=limit_text),
                note=note_message("amount_above_limit").format(limit=limit_text),
                payload={"validations": checks.as_dict()},
            )

        if config.validate_pix_key and record.recipient is not None:
            expected_key = record.recipient.expected_pix_key()
            if expected_key and notification.pix_key:
                if _normalize_key(expected_key) != _normalize_key(notification.pix_key):
                    raise PixKeyMismatchError(
                        details="chave informada pelo webhook difere do cadastro",
                        note=note_message("pix_key_mismatch"),
                        payload={"validations": checks.as_dict()},
                    )

        return ApprovalProof(checks=checks, within_limit=True, pix_key_verified=True)

    def _reject_record(
        self,
        db,
        record: TransferRecord,
        notification: WebhookNotification,
        rejection: TransferRejection,
        deadline: float,
    ) -> AuthorizationDecision:
        already_failed = record.status == record.shape.failed_status
        if record.status not in record.shape.valid_statuses and not already_failed:
            # Approved and deferred records keep their status; a late or duplicate delivery is only refused.
            self._log_rejection(rejection, record=record, transfer_status=record.status)
            return AuthorizationDecision.rejected(
                message=rejection.message,
                http_status=rejection.http_status,
                reason=rejection.reason,
                transfer_status=record.status,
            )

        self._check_deadline(deadline)
        record_note = note_message(rejection.record_note_key) if rejection.record_note_key else None
        to_status = self._transfers.transition(
            db,
            record,
            outcome=rejection.outcome,
            error_message=rejection.note,
            note=record_note,
        )
        if self._audit_all_transitions and rejection.audit_action:
            details = self._audit_details(record, notification)
            details["reason"] = rejection.reason
            details["validations"] = rejection.payload.get("validations")
            details["transfer_status"] = to_status
            self._audit.add(
                db,
                action=rejection.audit_action,
                entity_type=record.shape.table,
                entity_id=record.id,
                details=details,
            )
        self._log_rejection(rejection, record=record, transfer_status=to_status)
        return AuthorizationDecision.rejected(
            message=rejection.message,
            http_status=rejection.http_status,
            reason=rejection.reason,
            transfer_status=to_status,
        )

    def _approve_record(
        self,
        db,
        record: TransferRecord,
        notification: WebhookNotification,
        proof: ApprovalProof,
        deadline: float,
    ) -> AuthorizationDecision:
        self._check_deadline(deadline)
        to_status = self._transfers.transition(db, record, outcome="approved")
        if record.shape is TransferShape.GENERIC_PAYMENT and record.linked_quote_id is not None:
            self._quotes.update_status(db, record.linked_quote_id, "paid")

        details = self._audit_details(record, notification)
        details["validations_passed"] = proof.checks.as_dict()
        self._audit.add(
            db,
            action="TRANSFER_AUTO_APPROVED",
            entity_type=record.shape.table,
            entity_id=record.id,
            details=details,
        )
        # Expiry here still rolls the whole approval back.
        self._check_deadline(deadline)

        self._logger.info(
            "transfer_authorization_approved",
            extra={
                "transfer_id": record.external_transfer_id,
                "shape": record.shape.table,
                "record_id": record.id,
                "transfer_status": to_status,
            },
        )
        return AuthorizationDecision.approved(
            proof,
            message=success_message("transfer_approved"),
            transfer_status=to_status,
        )

    @staticmethod
    def _audit_details(record: TransferRecord, notification: WebhookNotification) -> Dict[str, Any]:
        recipient = record.recipient
        return {
            "asaas_transfer_id": notification.transfer_id,
            "supplier_id": record.recipient_id,
            "supplier_name": recipient.name if recipient else None,
            "amount": str(notification.value),
            "shape": record.shape.table,
            "transfer_method": record.transfer_method,
            "linked_quote_id": record.linked_quote_id,
            "webhook_timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _check_deadline(self, deadline: float) -> None:
        if self._clock() > deadline:
            raise AuthorizationTimeout(f"tempo limite de {self._timeout_seconds:g}s excedido na autorizacao")

    def _log_rejection(
        self,
        rejection: TransferRejection,
        *,
        record: TransferRecord | None = None,
        transfer_status: str | None = None,
    ) -> None:
        extra: Dict[str, Any] = {
            "reason": rejection.reason,
            "http_status": rejection.http_status,
            "details": rejection.details,
        }
        if rejection.payload:
            extra.update(rejection.payload)
        if record is not None:
            extra["transfer_id"] = record.external_transfer_id
            extra["shape"] = record.shape.table
            extra["record_id"] = record.id
            extra["transfer_status"] = transfer_status
        self._logger.warning("transfer_authorization_rejected", extra=extra)
