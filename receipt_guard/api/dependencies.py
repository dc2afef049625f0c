"""
FastAPI Dependencies - Caller authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from receipt_guard.config import settings
from receipt_guard.db.session import get_read_db, get_write_db
from receipt_guard.exceptions import AuthenticationError, NotConfiguredError
from receipt_guard.services.receipt_validation import ReceiptValidationService
from receipt_guard.services.store_notifications import StoreNotificationService
from receipt_guard.services.validators import ValidatorRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity from a verified Google or Firebase ID token."""

    user_id: str  # 'sub' claim
    email: str | None = None


bearer_scheme = HTTPBearer(auto_error=False)

# Verified tokens: token -> (user_id, email, expiry_timestamp)
_token_cache: dict[str, tuple[str, str | None, float]] = {}
_MAX_CACHE_SIZE = 10000
FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


def _cleanup_token_cache() -> None:
    """Drop expired entries once the cache is full."""
    if len(_token_cache) < _MAX_CACHE_SIZE:
        return
    now = time.time()
    for token in [k for k, (_, _, exp) in _token_cache.items() if exp < now]:
        del _token_cache[token]


def _token_issuer(token: str) -> str:
    """Issuer claim, read before verification to pick the certificate set."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.exceptions.DecodeError as exc:
        raise AuthenticationError("malformed token") from exc
    return str(claims.get("iss", ""))


def _verify_token(token: str, audiences: list[str]) -> dict[str, Any]:
    """
    Verify a Google or Firebase ID token against each accepted audience.

    Android tokens carry the web client ID as audience, so every configured
    audience is tried before giving up.
    """
    verify = (
        id_token.verify_firebase_token
        if _token_issuer(token).startswith(FIREBASE_ISSUER_PREFIX)
        else id_token.verify_oauth2_token
    )
    last_error = "no audience matched"
    for audience in audiences:
        try:
            idinfo: dict[str, Any] = verify(  # type: ignore[no-untyped-call]
                token,
                google_requests.Request(),  # type: ignore[no-untyped-call]
                audience,
            )
            return idinfo
        except ValueError as e:
            last_error = str(e)
            if "audience" in last_error.lower():
                continue
            break
    raise AuthenticationError(last_error)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """
    Authenticate the caller from `Authorization: Bearer {id_token}`.

    Raises:
        AuthenticationError: Missing, invalid or expired token
        NotConfiguredError: No accepted audiences configured
    """
    if credentials is None:
        raise AuthenticationError("Authorization header required")

    token = credentials.credentials
    cached = _token_cache.get(token)
    if cached is not None:
        user_id, email, expiry = cached
        if time.time() < expiry:
            return AuthenticatedUser(user_id=user_id, email=email)
        del _token_cache[token]

    audiences = settings.valid_auth_audiences
    if not audiences:
        raise NotConfiguredError("no ID token audiences configured. Set AUTH_AUDIENCES.")

    # Certificate fetch is blocking
    idinfo = await asyncio.to_thread(_verify_token, token, audiences)

    user_id = idinfo.get("sub")
    if not user_id:
        raise AuthenticationError("token has no subject")

    email = idinfo.get("email")
    # Cache until 60s before expiry
    expiry = float(idinfo.get("exp", time.time() + 3600)) - 60
    _cleanup_token_cache()
    _token_cache[token] = (user_id, email, expiry)

    logger.debug("caller_authenticated", user_id=user_id)
    return AuthenticatedUser(user_id=user_id, email=email)


def get_validators(request: Request) -> ValidatorRegistry:
    """Validators built at startup (see main.lifespan)."""
    validators: ValidatorRegistry | None = getattr(request.app.state, "validators", None)
    if validators is None:
        raise NotConfiguredError("store validators not initialized")
    return validators


def get_validation_service(
    db: AsyncSession = Depends(get_write_db),
    validators: ValidatorRegistry = Depends(get_validators),
) -> ReceiptValidationService:
    return ReceiptValidationService(db, validators)


def get_restore_service(
    db: AsyncSession = Depends(get_read_db),
    validators: ValidatorRegistry = Depends(get_validators),
) -> ReceiptValidationService:
    """Restore only reads, so it may use the replica."""
    return ReceiptValidationService(db, validators)


def get_notification_service(
    db: AsyncSession = Depends(get_write_db),
) -> StoreNotificationService:
    return StoreNotificationService(db)
