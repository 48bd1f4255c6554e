from __future__ import annotations

from decimal import Decimal

from app.contexts.payments.domain.transfer import DEFAULT_MAX_AUTO_APPROVE_AMOUNT, WebhookConfig, to_decimal
from app.infrastructure.repositories.base import BaseRepository


_CONFIG_ROW_ID = 1


class WebhookConfigRepository(BaseRepository):
    def get(self, db) -> WebhookConfig | None:
        row = db.execute(
            """
            SELECT enabled, auth_token, notification_email, max_auto_approve_amount, validate_pix_key
            FROM webhook_config
            WHERE id = ?
            LIMIT 1
            """,
            (_CONFIG_ROW_ID,),
        ).fetchone()
        if not row:
            return None
        data = dict(row)
        validate_pix_key = data.get("validate_pix_key")
        return WebhookConfig(
            enabled=bool(data.get("enabled")),
            auth_token=str(data.get("auth_token") or "").strip() or None,
            max_auto_approve_amount=to_decimal(data.get("max_auto_approve_amount"), DEFAULT_MAX_AUTO_APPROVE_AMOUNT),
            validate_pix_key=True if validate_pix_key is None else bool(validate_pix_key),
            notification_email=str(data.get("notification_email") or "").strip() or None,
        )

    def save(self, db, config: WebhookConfig) -> None:
        max_amount: Decimal = config.max_auto_approve_amount
        enabled = config.enabled if db.backend == "postgres" else int(config.enabled)
        validate_pix_key = config.validate_pix_key if db.backend == "postgres" else int(config.validate_pix_key)
        db.execute(
            """
            INSERT INTO webhook_config (id, enabled, auth_token, notification_email, max_auto_approve_amount, validate_pix_key)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                enabled = excluded.enabled,
                auth_token = excluded.auth_token,
                notification_email = excluded.notification_email,
                max_auto_approve_amount = excluded.max_auto_approve_amount,
                validate_pix_key = excluded.validate_pix_key,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                _CONFIG_ROW_ID,
                enabled,
                config.auth_token,
                config.notification_email,
                self.money_param(db, max_amount),
                validate_pix_key,
            ),
        )
