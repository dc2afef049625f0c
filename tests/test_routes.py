"""
Tests for API routes.

Auth, database and service dependencies are overridden; requests go through
the full FastAPI stack (validation, exception handlers, middleware).
"""

import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from receipt_guard.api.dependencies import (
    get_notification_service,
    get_restore_service,
    get_validation_service,
)
from receipt_guard.exceptions import InternalError, ReplayDetectedError
from receipt_guard.models.domain import (
    GrantLedgerEntry,
    Platform,
    ValidationOutcome,
    ValidationResult,
)
from receipt_guard.services.store_notifications import StoreNotificationService

VALIDATE_BODY = {
    "platform": "ios",
    "receiptData": "MIIT-receipt-b64",
    "productId": "coins_100",
    "transactionId": "1000000123456789",
}


@pytest.fixture
def validation_service() -> MagicMock:
    service = MagicMock()
    service.validate_receipt = AsyncMock(
        return_value=ValidationResult(
            outcome=ValidationOutcome(
                valid=True,
                product_id="coins_100",
                transaction_id="1000000123456789",
                purchase_date_ms=1_700_000_000_000,
            ),
            granted=True,
        )
    )
    service.restore_purchases = AsyncMock(return_value=[])
    return service


@pytest.fixture
def api(app, mock_auth_dependency, mock_db_dependency, validation_service, db_session):
    app.dependency_overrides.update(mock_auth_dependency)
    app.dependency_overrides.update(mock_db_dependency)
    app.dependency_overrides[get_validation_service] = lambda: validation_service
    app.dependency_overrides[get_restore_service] = lambda: validation_service
    app.dependency_overrides[get_notification_service] = lambda: StoreNotificationService(
        db_session
    )
    return app


class TestValidateReceipt:
    """Tests for POST /v1/receipts/validate."""

    @pytest.mark.asyncio
    async def test_valid(self, api, async_client, validation_service):
        response = await async_client.post("/v1/receipts/validate", json=VALIDATE_BODY)

        assert response.status_code == 200
        assert response.json() == {
            "valid": True,
            "productId": "coins_100",
            "transactionId": "1000000123456789",
            "purchaseDateEpochMs": 1_700_000_000_000,
            "expirationDateEpochMs": None,
            "cached": False,
            "error": None,
        }
        user_id, request = validation_service.validate_receipt.await_args.args
        assert user_id == "user-a"
        assert request.platform == Platform.IOS
        assert request.receipt_key == "1000000123456789"

    @pytest.mark.asyncio
    async def test_store_rejection_is_200(self, api, async_client, validation_service):
        validation_service.validate_receipt.return_value = ValidationResult(
            outcome=ValidationOutcome.rejected("Purchase is pending")
        )

        response = await async_client.post("/v1/receipts/validate", json=VALIDATE_BODY)

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["error"] == "Purchase is pending"

    @pytest.mark.asyncio
    async def test_missing_platform(self, api, async_client, validation_service):
        body = {k: v for k, v in VALIDATE_BODY.items() if k != "platform"}

        response = await async_client.post("/v1/receipts/validate", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid-argument"
        validation_service.validate_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transaction_id_rejected_for_android(
        self, api, async_client, validation_service
    ):
        response = await async_client.post(
            "/v1/receipts/validate",
            json={**VALIDATE_BODY, "platform": "android", "receiptData": "token-abc"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid-argument"
        validation_service.validate_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_platform(self, api, async_client):
        response = await async_client.post(
            "/v1/receipts/validate", json={**VALIDATE_BODY, "platform": "windows"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid-argument"

    @pytest.mark.asyncio
    async def test_blank_receipt(self, api, async_client):
        response = await async_client.post(
            "/v1/receipts/validate", json={**VALIDATE_BODY, "receiptData": "   "}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid-argument"

    @pytest.mark.asyncio
    async def test_replay(self, api, async_client, validation_service):
        validation_service.validate_receipt.side_effect = ReplayDetectedError(
            "1000000123456789", "user-b", "user-a"
        )

        response = await async_client.post("/v1/receipts/validate", json=VALIDATE_BODY)

        assert response.status_code == 403
        assert response.json() == {
            "error": "permission-denied",
            "message": "This receipt has already been used by another user",
        }

    @pytest.mark.asyncio
    async def test_internal_error(self, api, async_client, validation_service):
        validation_service.validate_receipt.side_effect = InternalError("database unavailable")

        response = await async_client.post("/v1/receipts/validate", json=VALIDATE_BODY)

        assert response.status_code == 500
        assert response.json()["error"] == "internal"

    @pytest.mark.asyncio
    async def test_unauthenticated(self, app, async_client, validation_service):
        app.dependency_overrides[get_validation_service] = lambda: validation_service

        response = await async_client.post("/v1/receipts/validate", json=VALIDATE_BODY)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"
        validation_service.validate_receipt.assert_not_awaited()


class TestRestorePurchases:
    """Tests for POST /v1/purchases/restore."""

    @pytest.mark.asyncio
    async def test_restore(self, api, async_client, validation_service):
        validation_service.restore_purchases.return_value = [
            GrantLedgerEntry(
                product_id="coins_100",
                transaction_id="GPA.1111",
                purchase_date_ms=1_700_000_000_000,
                platform=Platform.ANDROID,
            )
        ]

        response = await async_client.post("/v1/purchases/restore")

        assert response.status_code == 200
        assert response.json() == {
            "purchases": [
                {
                    "productId": "coins_100",
                    "transactionId": "GPA.1111",
                    "purchaseDateEpochMs": 1_700_000_000_000,
                    "platform": "android",
                }
            ]
        }
        validation_service.restore_purchases.assert_awaited_once_with("user-a")

    @pytest.mark.asyncio
    async def test_restore_empty(self, api, async_client):
        response = await async_client.post("/v1/purchases/restore")

        assert response.json() == {"purchases": []}


class TestWebhooks:
    """Tests for store notification endpoints."""

    @pytest.mark.asyncio
    async def test_google_notification_recorded(self, api, async_client, db_session, make_result):
        db_session.execute.return_value = make_result(scalar=1)
        data = base64.b64encode(
            json.dumps(
                {
                    "eventTimeMillis": "1700000000000",
                    "subscriptionNotification": {
                        "notificationType": 13,
                        "subscriptionId": "premium_monthly",
                    },
                }
            ).encode()
        ).decode()

        response = await async_client.post(
            "/v1/webhooks/google", json={"message": {"data": data, "messageId": "42"}}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_undecodable_body_still_acknowledged(self, api, async_client, db_session):
        response = await async_client.post("/v1/webhooks/apple", content=b"garbage")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        db_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_failure_still_acknowledged(self, api, async_client, db_session):
        db_session.execute.side_effect = RuntimeError("connection lost")
        data = base64.b64encode(
            json.dumps({"eventTimeMillis": "1", "testNotification": {}}).encode()
        ).decode()

        response = await async_client.post(
            "/v1/webhooks/google", json={"message": {"data": data, "messageId": "43"}}
        )

        assert response.status_code == 200
        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path, content",
        [
            ("/v1/webhooks/apple", b"\xff\xfe\xfa\x00"),
            (
                "/v1/webhooks/google",
                json.dumps(
                    {
                        "message": {
                            "messageId": "44",
                            "data": base64.b64encode(
                                json.dumps(
                                    {"subscriptionNotification": {"notificationType": "x"}}
                                ).encode()
                            ).decode(),
                        }
                    }
                ).encode(),
            ),
            (
                "/v1/webhooks/google",
                json.dumps(
                    {"message": {"messageId": "45", "data": base64.b64encode(b"5").decode()}}
                ).encode(),
            ),
        ],
    )
    async def test_malformed_notification_still_acknowledged(
        self, api, async_client, db_session, path, content
    ):
        response = await async_client.post(path, content=content)

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        db_session.execute.assert_not_awaited()


class TestHealthAndMetrics:
    """Tests for /health, /metrics and /."""

    @pytest.mark.asyncio
    async def test_healthy(self, api, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_unhealthy(self, api, async_client, db_session):
        db_session.execute.side_effect = RuntimeError("connection refused")

        response = await async_client.get("/health")

        assert response.status_code == 503
        assert response.json()["detail"]["database"] == "disconnected"

    @pytest.mark.asyncio
    async def test_metrics(self, api, async_client):
        await async_client.get("/health")

        response = await async_client.get("/metrics")

        assert response.status_code == 200
        assert "receipt_guard_http_requests_total" in response.text

    @pytest.mark.asyncio
    async def test_root(self, async_client):
        response = await async_client.get("/")

        assert response.json()["status"] == "running"
