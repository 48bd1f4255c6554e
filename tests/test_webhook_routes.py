import json
import unittest
from decimal import Decimal
from unittest import mock

from app import create_app
from app.config import Config
from app.contexts.payments.domain.pix import generate_pix_payload
from app.contexts.payments.domain.transfer import TransferShape, WebhookConfig
from app.contexts.payments.infrastructure.repositories.supplier_repository import SupplierRepository
from app.contexts.payments.infrastructure.repositories.transfer_repository import TransferRepository
from app.contexts.payments.infrastructure.repositories.webhook_config_repository import WebhookConfigRepository
from app.db import close_db, get_db
from app.observability import reset_metrics_for_tests
from tests.helpers.temp_db import TempDbSandbox


WEBHOOK_URL = "/api/webhooks/transfer-authorization"
WEBHOOK_TOKEN = "token-compartilhado"


class WebhookRoutesTestBase(unittest.TestCase):
    config_overrides: dict = {}

    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="webhook_routes")
        self.app = create_app(self._temp_db.make_config(Config, **self.config_overrides))
        self.client = self.app.test_client()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def _configure(self, **fields) -> None:
        values = {"enabled": True, "auth_token": WEBHOOK_TOKEN}
        values.update(fields)
        with self.app.app_context():
            WebhookConfigRepository().save(get_db(), WebhookConfig(**values))
            close_db()

    def _seed_payment(self, *, amount="250.00", external_id="tr_http_1") -> int:
        with self.app.app_context():
            db = get_db()
            supplier_id = SupplierRepository().create(db, name="Fornecedor Beta", pix_key="+5511987654321")
            payment_id = TransferRepository().create_payment(
                db,
                supplier_id=supplier_id,
                amount=Decimal(amount),
                external_transfer_id=external_id,
            )
            close_db()
        return payment_id

    def _payment_status(self, payment_id: int) -> str:
        with self.app.app_context():
            row = TransferRepository().get_row(get_db(), TransferShape.GENERIC_PAYMENT, payment_id)
            close_db()
        return row["status"]

    def _post_webhook(self, payload, *, token=WEBHOOK_TOKEN, header="asaas-access-token"):
        headers = {header: token} if token is not None else {}
        body = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
        return self.client.post(WEBHOOK_URL, data=body, headers=headers, content_type="application/json")


class WebhookRouteTest(WebhookRoutesTestBase):
    def test_preflight_returns_cors_headers_without_config(self) -> None:
        response = self.client.open(WEBHOOK_URL, method="OPTIONS")

        self.assertEqual(response.status_code, 204)
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        self.assertIn("asaas-access-token", response.headers["Access-Control-Allow-Headers"])
        self.assertIn("POST", response.headers["Access-Control-Allow-Methods"])

    def test_missing_config_is_forbidden(self) -> None:
        response = self._post_webhook({"transfer": {"id": "tr_http_1", "value": 10}})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()["status"], "REJECTED")
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")

    def test_wrong_token_is_unauthorized(self) -> None:
        self._configure()

        response = self._post_webhook({"transfer": {"id": "tr_http_1", "value": 10}}, token="errado")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(
            response.get_json(),
            {"status": "REJECTED", "message": "Token de autenticacao invalido"},
        )

    def test_malformed_body_is_bad_request(self) -> None:
        self._configure()

        response = self._post_webhook(b"{nao json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Payload invalido")

    def test_unknown_transfer_is_rejected_with_200(self) -> None:
        self._configure()

        response = self._post_webhook({"transfer": {"id": "tr_inexistente", "value": 10}})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["status"], "REJECTED")

    def test_matching_transfer_is_approved(self) -> None:
        self._configure()
        payment_id = self._seed_payment()

        response = self._post_webhook(
            {"transfer": {"id": "tr_http_1", "value": 250.00, "pixKey": "+5511987654321"}}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["status"], "APPROVED")
        self.assertEqual(self._payment_status(payment_id), "released")
        self.assertTrue(response.headers.get("X-Request-Id"))

    def test_config_load_failure_fails_closed(self) -> None:
        self._configure()
        payment_id = self._seed_payment()

        with mock.patch(
            "app.contexts.payments.application.webhook_config.WebhookConfigRepository.get",
            side_effect=RuntimeError("banco indisponivel"),
        ):
            response = self._post_webhook({"transfer": {"id": "tr_http_1", "value": 250}})

        self.assertEqual(response.status_code, 500)
        body = response.get_json()
        self.assertEqual(body["status"], "REJECTED")
        self.assertEqual(body["message"], "Erro ao processar autorizacao")
        self.assertEqual(body["error"], "banco indisponivel")
        self.assertEqual(self._payment_status(payment_id), "escrow")

    def test_webhook_is_not_rate_limited(self) -> None:
        app = create_app(
            self._temp_db.make_config(Config, RATE_LIMIT_ENABLED=True, RATE_LIMIT_MAX_REQUESTS=1)
        )
        client = app.test_client()

        statuses = [client.post(WEBHOOK_URL, data="{}").status_code for _ in range(3)]

        self.assertEqual(statuses, [403, 403, 403])


class CustomAuthHeaderTest(WebhookRoutesTestBase):
    config_overrides = {"WEBHOOK_AUTH_HEADER": "X-Webhook-Token"}

    def test_token_read_from_configured_header(self) -> None:
        self._configure()
        self._seed_payment()
        payload = {"transfer": {"id": "tr_http_1", "value": "250.00"}}

        default_header = self._post_webhook(payload)
        custom_header = self._post_webhook(payload, header="X-Webhook-Token")

        self.assertEqual(default_header.status_code, 401)
        self.assertEqual(custom_header.status_code, 200)
        self.assertEqual(custom_header.get_json()["status"], "APPROVED")

    def test_preflight_allows_configured_header(self) -> None:
        response = self.client.open(WEBHOOK_URL, method="OPTIONS")

        self.assertIn("x-webhook-token", response.headers["Access-Control-Allow-Headers"])


class PixRoutesTest(WebhookRoutesTestBase):
    def test_payload_endpoint_builds_code(self) -> None:
        response = self.client.post(
            "/api/pix/payload",
            json={"pix_key": "12345678901", "amount": 10, "recipient_name": "Joao", "reference": "PAY12345678"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["payload"], generate_pix_payload("12345678901", 10, "Joao", "PAY12345678"))
        self.assertFalse(body["degraded"])
        self.assertEqual(body["key_type"], "cpf")
        self.assertEqual(body["key_display"], "123.456.789-01")
        self.assertNotIn("qr_data_url", body)

    def test_payload_endpoint_renders_qr_code(self) -> None:
        response = self.client.post(
            "/api/pix/payload",
            json={"pix_key": "a@b.com", "amount": "42.10", "recipient_name": "Maria", "qr": True},
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["qr_data_url"].startswith("data:image/png;base64,"))

    def test_payload_endpoint_degrades_on_bad_amount(self) -> None:
        response = self.client.post(
            "/api/pix/payload",
            json={"pix_key": "a@b.com", "amount": "zero", "recipient_name": "Maria"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body["degraded"])
        self.assertEqual(body["payload"], "a@b.com")

    def test_payload_endpoint_requires_key(self) -> None:
        response = self.client.post("/api/pix/payload", json={"amount": 10, "recipient_name": "Joao"})

        self.assertEqual(response.status_code, 400)
        body = response.get_json()
        self.assertEqual(body["error"], "pix_key_required")
        self.assertEqual(body["message"], "Informe a chave PIX.")
        self.assertTrue(body["request_id"])

    def test_payload_endpoint_rejects_non_json_body(self) -> None:
        response = self.client.post("/api/pix/payload", data="texto", content_type="text/plain")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "validation_error")

    def test_key_info(self) -> None:
        response = self.client.get("/api/pix/key-info", query_string={"key": "12345678000199"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.get_json(),
            {"key_type": "cnpj", "label": "CNPJ", "display": "12.345.678/0001-99"},
        )

    def test_key_info_requires_key(self) -> None:
        response = self.client.get("/api/pix/key-info")

        self.assertEqual(response.status_code, 400)

    def test_validate_endpoint(self) -> None:
        payload = generate_pix_payload("a@b.com", 5, "Maria")

        valid = self.client.post("/api/pix/validate", json={"payload": payload}).get_json()
        invalid = self.client.post("/api/pix/validate", json={"payload": payload[:-4] + "ZZZZ"}).get_json()

        self.assertTrue(valid["valid"])
        self.assertEqual(valid["fields"][0], {"tag": "00", "value": "01"})
        self.assertFalse(invalid["valid"])


class HealthRoutesTest(WebhookRoutesTestBase):
    def test_health_reports_backend_and_metrics(self) -> None:
        self.client.post("/api/pix/payload", json={"pix_key": "a@b.com", "amount": 1, "recipient_name": "Maria"})

        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["db"], "sqlite")
        self.assertEqual(body["metrics"]["pix_payload"], {"ok": 1})

    def test_metrics_endpoint_exposes_authorization_counter(self) -> None:
        self._post_webhook({"transfer": {"id": "tr_x", "value": 1}})

        response = self.client.get("/metrics")

        self.assertEqual(response.status_code, 200)
        text = response.get_data(as_text=True)
        self.assertIn('transfer_authorization_total{reason="webhook_disabled",status="REJECTED"} 1', text)
        self.assertIn("http_request_total", text)
