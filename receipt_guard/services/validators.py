"""
Validator Registry - Builds the platform validators once, at process start.

Store credentials are resolved from settings into explicit config objects
and injected into each validator. Missing credentials abort startup.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass

from structlog import get_logger

from receipt_guard.config import Settings
from receipt_guard.exceptions import NotConfiguredError
from receipt_guard.models.apple import AppleReceiptConfig
from receipt_guard.models.domain import Platform
from receipt_guard.models.google_play import GooglePlayConfig
from receipt_guard.services.apple_receipt_validator import AppleReceiptValidator
from receipt_guard.services.google_play_validator import GooglePlayValidator

logger = get_logger(__name__)


@dataclass(frozen=True)
class ValidatorRegistry:
    """Validators keyed by platform."""

    apple: AppleReceiptValidator | None = None
    google: GooglePlayValidator | None = None

    def for_platform(self, platform: Platform) -> AppleReceiptValidator | GooglePlayValidator:
        """
        Get the validator for a platform.

        Raises:
            NotConfiguredError: If that platform's validator was not built
        """
        validator = self.apple if platform == Platform.IOS else self.google
        if validator is None:
            raise NotConfiguredError(f"No validator configured for platform {platform.value}")
        return validator


def parse_service_account(raw: str) -> tuple[dict[str, str] | None, str | None]:
    """
    Interpret GOOGLE_SERVICE_ACCOUNT.

    Accepts raw JSON, base64 encoded JSON, or a path to a JSON key file.
    Empty means Application Default Credentials.

    Returns:
        (service_account_info, service_account_file)
    """
    raw = raw.strip()
    if not raw:
        return None, None
    if raw.startswith("{"):
        try:
            return json.loads(raw), None
        except json.JSONDecodeError as exc:
            raise NotConfiguredError(f"GOOGLE_SERVICE_ACCOUNT is not valid JSON: {exc}") from exc
    if os.path.isfile(raw):
        return None, raw
    try:
        decoded = base64.b64decode(raw, validate=True).decode("utf-8")
        return json.loads(decoded), None
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise NotConfiguredError(
            "GOOGLE_SERVICE_ACCOUNT must be JSON, base64 JSON, or an existing file path"
        ) from exc


def build_apple_config(settings: Settings) -> AppleReceiptConfig:
    """Apple config from settings."""
    if not settings.apple_shared_secret:
        raise NotConfiguredError("Apple shared secret not configured. Set APPLE_SHARED_SECRET.")
    return AppleReceiptConfig(
        shared_secret=settings.apple_shared_secret,
        production_url=settings.apple_production_url,
        sandbox_url=settings.apple_sandbox_url,
        timeout_seconds=settings.apple_timeout_seconds,
    )


def build_google_config(settings: Settings) -> GooglePlayConfig:
    """Google Play config from settings."""
    if not settings.android_package_name:
        raise NotConfiguredError("Android package name not configured. Set ANDROID_PACKAGE_NAME.")
    info, path = parse_service_account(settings.google_service_account)
    return GooglePlayConfig(
        package_name=settings.android_package_name,
        service_account_info=info,
        service_account_file=path,
    )


def build_validators(settings: Settings) -> ValidatorRegistry:
    """
    Build both platform validators.

    Raises:
        NotConfiguredError: If any store credential is missing or unusable
    """
    registry = ValidatorRegistry(
        apple=AppleReceiptValidator(build_apple_config(settings)),
        google=GooglePlayValidator(build_google_config(settings)),
    )
    logger.info("validators_built", platforms=[p.value for p in Platform])
    return registry
