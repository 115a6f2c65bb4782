"""Bearer authentication for public endpoints.

Wraps `QuotaRateGuard.admit` as a FastAPI dependency and maps each
rejection reason onto a stable HTTP error.
"""
import logging
from typing import Dict, Optional, Tuple

from fastapi import Depends, Header, Request

from credgate.dependencies import get_guard
from credgate.domain.guard import Admission, QuotaRateGuard, RejectReason, Rejection
from credgate.domain.tokens import extract_bearer_token
from credgate.errors import raise_credgate_error

logger = logging.getLogger(__name__)

# reason -> (status, code, message)
REJECTION_ERRORS: Dict[RejectReason, Tuple[int, str, str]] = {
    RejectReason.MALFORMED_CREDENTIAL: (400, "AUTH_MALFORMED", "Invalid Authorization format"),
    RejectReason.UNAUTHENTICATED: (401, "AUTH_INVALID", "Invalid API key"),
    RejectReason.REVOKED: (401, "AUTH_REVOKED", "API key has been revoked"),
    RejectReason.EXPIRED: (401, "AUTH_EXPIRED", "API key has expired"),
    RejectReason.RATE_LIMITED: (429, "RATE_LIMITED", "Rate limit exceeded"),
    RejectReason.QUOTA_EXCEEDED: (402, "QUOTA_EXCEEDED", "Monthly quota exceeded"),
    RejectReason.UNAVAILABLE: (503, "SERVICE_UNAVAILABLE", "Service temporarily unavailable"),
}


class AuthContext:
    """Authentication context for requests."""

    def __init__(self, admission: Admission):
        self.admission = admission
        self.key_id = admission.record.id
        self.owner = admission.record.owner
        self.tier = admission.tier


def client_ip(request: Request) -> Optional[str]:
    """First x-forwarded-for hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def raise_for_rejection(rejection: Rejection) -> None:
    status_code, code, message = REJECTION_ERRORS[rejection.reason]
    headers = None
    if rejection.reason is RejectReason.RATE_LIMITED and rejection.retry_after:
        headers = {"Retry-After": str(rejection.retry_after)}
    raise_credgate_error(code, status_code, message, headers=headers)


async def get_auth_context(
    request: Request,
    authorization: Optional[str] = Header(None),
    guard: QuotaRateGuard = Depends(get_guard),
) -> AuthContext:
    """Extract and admit the bearer key from the Authorization header."""
    if not authorization:
        raise_credgate_error("AUTH_INVALID", 401, "Missing Authorization header")

    token = extract_bearer_token(authorization)
    if token is None:
        raise_credgate_error("AUTH_MALFORMED", 400, "Invalid Authorization format")

    decision = await guard.admit(token, caller_ip=client_ip(request))
    if isinstance(decision, Rejection):
        logger.info(f"Request rejected: {decision.reason.value}")
        raise_for_rejection(decision)

    ctx = AuthContext(decision)
    request.state.auth = ctx
    return ctx
