from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from paycore.core import pipeline as pipeline_module
from paycore.core.pipeline import PaymentPipeline
from paycore.main import app
from paycore.middleware import logging_middleware

WALLET = "0x" + "44" * 20


class RecordingLogger:
    def __init__(self):
        self.lines = []

    def _record(self, level):
        def log(event, **fields):
            self.lines.append((level, event, fields))
        return log

    def __getattr__(self, level):
        return self._record(level)


@pytest.fixture
def access_log(monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(logging_middleware, "logger", recorder)
    return recorder


@pytest.fixture
def pipeline(monkeypatch):
    backend = AsyncMock()
    backend.get_transaction_share_data = AsyncMock(return_value=None)
    instance = PaymentPipeline(backend=backend, solana_connection=AsyncMock())
    monkeypatch.setattr(pipeline_module, "_pipeline", instance)
    return instance


def test_webhook_line_carries_partner_order(pipeline, access_log):
    session = pipeline.open_fiat_ramp({"walletAddress": WALLET}, message_id="msg-1")

    response = TestClient(app).post(
        "/webhooks/ramp",
        json={"eventID": "ORDER_PROCESSING", "webhookData": {"partnerOrderId": session.partner_order_id}},
        headers={"x-request-id": "delivery-7"},
    )

    assert response.headers["x-request-id"] == "delivery-7"
    [(level, event, fields)] = access_log.lines
    assert (level, event) == ("info", "http_request")
    assert fields["webhook"] == "ramp"
    assert fields["partner_order_id"] == session.partner_order_id
    assert fields["ramp_event"] == "ORDER_PROCESSING"
    assert fields["status"] == 200


def test_rejected_webhook_logged_as_warning(pipeline, access_log):
    response = TestClient(app).post(
        "/webhooks/ramp", content=b"not json", headers={"content-type": "application/json"}
    )

    assert response.status_code == 400
    [(level, _, fields)] = access_log.lines
    assert level == "warning"
    assert fields["webhook"] == "ramp"
    assert "partner_order_id" not in fields


def test_health_checks_log_at_debug(pipeline, access_log):
    TestClient(app).get("/healthz")

    [(level, _, fields)] = access_log.lines
    assert level == "debug"
    assert "webhook" not in fields


def test_generated_request_id():
    response = TestClient(app).get("/")

    assert len(response.headers["x-request-id"]) == 8
