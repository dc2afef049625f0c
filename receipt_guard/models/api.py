"""
API Models - Pydantic models for request/response validation.

Wire fields are camelCase to match the mobile clients; Python attributes are
snake_case.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from receipt_guard.models.domain import (
    GrantLedgerEntry,
    Platform,
    ProductType,
    ValidationOutcome,
    ValidationRequest,
)


class CamelModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Receipt Validation Models
# ============================================================================


class ValidateReceiptRequest(CamelModel):
    """POST /v1/receipts/validate request body."""

    platform: Platform
    receipt_data: str = Field(..., min_length=1, max_length=1_000_000)
    product_id: str = Field(..., min_length=1, max_length=255)
    transaction_id: str | None = Field(None, min_length=1, max_length=255)
    product_type: ProductType = ProductType.PRODUCT

    @field_validator("receipt_data", "product_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        """Reject whitespace-only values."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @model_validator(mode="after")
    def transaction_id_ios_only(self) -> "ValidateReceiptRequest":
        """Play purchases are identified by their token alone."""
        if self.transaction_id is not None and self.platform != Platform.IOS:
            raise ValueError("transactionId is only accepted for ios")
        return self

    def to_domain(self) -> ValidationRequest:
        """Convert to domain request."""
        return ValidationRequest(
            platform=self.platform,
            receipt_payload=self.receipt_data,
            product_id=self.product_id,
            transaction_id=self.transaction_id,
            product_type=self.product_type,
        )


class ValidateReceiptResponse(CamelModel):
    """POST /v1/receipts/validate response."""

    valid: bool
    product_id: str
    transaction_id: str
    purchase_date_epoch_ms: int
    expiration_date_epoch_ms: int | None = None
    cached: bool = False
    error: str | None = None

    @classmethod
    def from_outcome(cls, outcome: ValidationOutcome) -> "ValidateReceiptResponse":
        """Build the response from a validation outcome."""
        return cls(
            valid=outcome.valid,
            product_id=outcome.product_id,
            transaction_id=outcome.transaction_id,
            purchase_date_epoch_ms=outcome.purchase_date_ms,
            expiration_date_epoch_ms=outcome.expiration_date_ms,
            cached=outcome.cached,
            error=outcome.error,
        )


# ============================================================================
# Restore Models
# ============================================================================


class PurchaseItem(CamelModel):
    """Single entitlement in a restore response."""

    product_id: str
    transaction_id: str
    purchase_date_epoch_ms: int
    platform: Platform

    @classmethod
    def from_entry(cls, entry: GrantLedgerEntry) -> "PurchaseItem":
        """Build from a ledger entry."""
        return cls(
            product_id=entry.product_id,
            transaction_id=entry.transaction_id,
            purchase_date_epoch_ms=entry.purchase_date_ms,
            platform=entry.platform,
        )


class RestorePurchasesResponse(CamelModel):
    """POST /v1/purchases/restore response."""

    purchases: list[PurchaseItem]


# ============================================================================
# Errors, Webhooks, Health
# ============================================================================


ErrorCode = Literal["unauthenticated", "invalid-argument", "permission-denied", "internal"]


class ErrorResponse(BaseModel):
    """Structured error body."""

    error: ErrorCode
    message: str


class WebhookAckResponse(BaseModel):
    """Webhook acknowledgement - always returned with 200."""

    status: Literal["ok"] = "ok"


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    version: str
