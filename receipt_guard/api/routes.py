"""
API Routes - FastAPI endpoints for receipt validation.

NO DICTIONARIES - All requests/responses use Pydantic models.
Errors are raised as ReceiptGuardError subclasses and rendered by the
exception handler in main.py.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from receipt_guard.api.dependencies import (
    AuthenticatedUser,
    get_current_user,
    get_notification_service,
    get_restore_service,
    get_validation_service,
)
from receipt_guard.config import settings
from receipt_guard.db.session import get_read_db
from receipt_guard.exceptions import InvalidArgumentError
from receipt_guard.models.api import (
    ErrorResponse,
    HealthResponse,
    PurchaseItem,
    RestorePurchasesResponse,
    ValidateReceiptRequest,
    ValidateReceiptResponse,
    WebhookAckResponse,
)
from receipt_guard.observability.metrics import metrics
from receipt_guard.services.receipt_validation import ReceiptValidationService
from receipt_guard.services.store_notifications import (
    StoreNotificationService,
    parse_apple_notification,
    parse_google_notification,
)

logger = get_logger(__name__)

router = APIRouter()

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/v1/receipts/validate",
    response_model=ValidateReceiptResponse,
    response_model_by_alias=True,
    responses=ERROR_RESPONSES,
)
async def validate_receipt(
    request: ValidateReceiptRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: ReceiptValidationService = Depends(get_validation_service),
) -> ValidateReceiptResponse:
    """
    Validate a store receipt and grant the purchased product.

    A receipt the caller already redeemed is answered from the database with
    cached=true. A receipt redeemed by anyone else is rejected with 403.
    Store rejections are 200 with valid=false and an error message.
    """
    result = await service.validate_receipt(user.user_id, request.to_domain())
    return ValidateReceiptResponse.from_outcome(result.outcome)


@router.post(
    "/v1/purchases/restore",
    response_model=RestorePurchasesResponse,
    response_model_by_alias=True,
    responses=ERROR_RESPONSES,
)
async def restore_purchases(
    user: AuthenticatedUser = Depends(get_current_user),
    service: ReceiptValidationService = Depends(get_restore_service),
) -> RestorePurchasesResponse:
    """List every entitlement granted to the caller, oldest first."""
    purchases = await service.restore_purchases(user.user_id)
    return RestorePurchasesResponse(
        purchases=[PurchaseItem.from_entry(entry) for entry in purchases]
    )


# =============================================================================
# Store Server Notifications
# =============================================================================
# Stores retry anything but 2xx, so these always acknowledge. Undecodable
# bodies are logged and dropped.


async def _acknowledge(
    request: Request,
    platform: str,
    service: StoreNotificationService,
) -> WebhookAckResponse:
    payload = await request.body()
    parse = parse_apple_notification if platform == "ios" else parse_google_notification
    try:
        notification = parse(payload)
    except InvalidArgumentError as exc:
        logger.warning(
            "store_notification_rejected",
            platform=platform,
            error=exc.message,
            payload_bytes=len(payload),
        )
        metrics.record_error("InvalidArgumentError", f"{platform}_webhook")
        return WebhookAckResponse()

    try:
        recorded = await service.record(notification)
    except Exception as exc:
        await service.session.rollback()
        logger.error(
            "store_notification_record_failed",
            platform=platform,
            notification_id=notification.notification_id,
            error=str(exc),
            exc_info=True,
        )
        metrics.record_error(type(exc).__name__, f"{platform}_webhook")
        return WebhookAckResponse()

    metrics.record_notification(platform, recorded)
    return WebhookAckResponse()


@router.post("/v1/webhooks/apple", response_model=WebhookAckResponse)
async def apple_webhook(
    request: Request,
    service: StoreNotificationService = Depends(get_notification_service),
) -> WebhookAckResponse:
    """App Store Server Notifications V2 endpoint."""
    return await _acknowledge(request, "ios", service)


@router.post("/v1/webhooks/google", response_model=WebhookAckResponse)
async def google_webhook(
    request: Request,
    service: StoreNotificationService = Depends(get_notification_service),
) -> WebhookAckResponse:
    """Google Play Real-time Developer Notifications (Pub/Sub push) endpoint."""
    return await _acknowledge(request, "android", service)


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=HealthResponse(
                status="unhealthy",
                database="disconnected",
                version=settings.api_version,
            ).model_dump(),
        ) from exc

    return HealthResponse(status="healthy", database="connected", version=settings.api_version)
