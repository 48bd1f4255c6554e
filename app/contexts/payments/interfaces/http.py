from __future__ import annotations

import base64
import io
from dataclasses import dataclass

import qrcode
from flask import Blueprint, Flask, current_app, jsonify, request

from app.contexts.payments.application.transfer_authorization import TransferAuthorizationService
from app.contexts.payments.application.webhook_config import WebhookConfigProvider
from app.contexts.payments.domain.pix import (
    PixPayloadError,
    build_copy_paste_code,
    classify_pix_key,
    clean_pix_key,
    parse_pix_payload,
    validate_pix_payload,
)
from app.contexts.payments.domain.transfer import WebhookRequest
from app.db import get_db
from app.errors import ValidationError
from app.observability import observe_pix_payload
from app.security import cors_headers


payments_bp = Blueprint("payments", __name__)


@dataclass
class PaymentsServices:
    config_provider: WebhookConfigProvider
    authorization: TransferAuthorizationService


def register_payments(app: Flask) -> PaymentsServices:
    services = PaymentsServices(
        config_provider=WebhookConfigProvider(
            ttl_seconds=float(app.config.get("WEBHOOK_CONFIG_CACHE_SECONDS", 0) or 0),
        ),
        authorization=TransferAuthorizationService(
            audit_all_transitions=bool(app.config.get("AUDIT_ALL_TRANSITIONS", False)),
            timeout_seconds=float(app.config.get("WEBHOOK_TIMEOUT_SECONDS", 10.0) or 10.0),
        ),
    )
    app.extensions["payments"] = services
    app.register_blueprint(payments_bp)
    return services


def payments_services() -> PaymentsServices:
    return current_app.extensions["payments"]


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError(details="corpo JSON ausente ou invalido")
    return payload


def _qr_data_url(content: str) -> str:
    image = qrcode.make(content)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


@payments_bp.route("/api/webhooks/transfer-authorization", methods=["POST", "OPTIONS"])
def transfer_authorization_webhook():
    headers = cors_headers()
    if request.method == "OPTIONS":
        return "", 204, headers

    services = payments_services()
    db = get_db()
    webhook_request = WebhookRequest(
        raw_body=request.get_data(cache=False),
        auth_token=request.headers.get(current_app.config["WEBHOOK_AUTH_HEADER"]),
    )
    # Config read failures surface as a 500 REJECTED decision like any other engine error.
    try:
        config = services.config_provider.load(db)
    except Exception as exc:
        current_app.logger.exception("webhook_config_load_failed")
        decision = services.authorization.reject_internal_error(exc)
    else:
        decision = services.authorization.authorize(db, webhook_request, config)
    return jsonify(decision.to_response_payload()), decision.http_status, headers


@payments_bp.route("/api/pix/payload", methods=["POST"])
def pix_payload():
    payload = _json_body()
    pix_key = clean_pix_key(payload.get("pix_key"))
    if not pix_key:
        raise ValidationError(
            code="pix_key_required",
            message_key="pix_key_required",
            details="pix_key ausente",
        )

    code = build_copy_paste_code(
        pix_key,
        payload.get("amount"),
        str(payload.get("recipient_name") or ""),
        payload.get("reference"),
        merchant_city=current_app.config["PIX_MERCHANT_CITY"],
        default_reference=current_app.config["PIX_DEFAULT_REFERENCE"],
    )
    observe_pix_payload("degraded" if code.degraded else "ok")

    key_info = classify_pix_key(pix_key)
    response = {
        "payload": code.payload,
        "degraded": code.degraded,
        "key_type": key_info.key_type,
        "key_label": key_info.label,
        "key_display": key_info.display,
    }
    if code.error:
        response["error"] = code.error
    if payload.get("qr"):
        response["qr_data_url"] = _qr_data_url(code.payload)
    return jsonify(response)


@payments_bp.route("/api/pix/key-info", methods=["GET"])
def pix_key_info():
    raw_key = request.args.get("key") or ""
    if not raw_key.strip():
        raise ValidationError(
            code="pix_key_required",
            message_key="pix_key_required",
            details="parametro key ausente",
        )
    info = classify_pix_key(raw_key)
    return jsonify({"key_type": info.key_type, "label": info.label, "display": info.display})


@payments_bp.route("/api/pix/validate", methods=["POST"])
def pix_validate():
    payload = _json_body()
    code = str(payload.get("payload") or "").strip()
    if not code:
        raise ValidationError(details="payload ausente")

    valid = validate_pix_payload(code)
    try:
        fields = [{"tag": tag, "value": value} for tag, value in parse_pix_payload(code)]
    except PixPayloadError:
        fields = []
    return jsonify({"valid": valid, "fields": fields})
