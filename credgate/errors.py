"""Error taxonomy and HTTP error helpers."""
from fastapi import HTTPException
from typing import Optional, Dict, Any


class CredgateError(Exception):
    """Base class for credential-core failures.

    `public_message` is the only text that may cross a trust boundary;
    `str(exc)` may carry internal detail and is for logs only.
    """
    code = "INTERNAL_ERROR"
    public_message = "Internal error"
    retryable = False


class ConfigurationError(CredgateError):
    """Process cannot serve: bad or missing master key, unknown tier, bad settings."""
    code = "CONFIGURATION_ERROR"
    public_message = "Service misconfigured"


class InvalidKeyRequest(CredgateError, ValueError):
    code = "INVALID_REQUEST"
    public_message = "Invalid key request"


class DecryptionError(CredgateError):
    """Envelope could not be opened. Format and tag failures look identical."""
    code = "DECRYPTION_FAILED"
    public_message = "Unable to decrypt secret"

    def __init__(self, message: str = "Unable to decrypt secret"):
        super().__init__(message)


class StoreUnavailable(CredgateError):
    """Record or counter store timed out or errored. Safe to retry."""
    code = "STORE_UNAVAILABLE"
    public_message = "Service temporarily unavailable"
    retryable = True


def raise_credgate_error(
    code: str,
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> None:
    """Raise a standardized HTTPException.

    Args:
        code: Error code (AUTH_INVALID, RATE_LIMITED, etc.)
        status_code: HTTP Status Code (401, 429, etc.)
        message: Human readable message
        details: Optional extra details
        headers: Optional response headers (e.g. Retry-After)
    """
    error_body: Dict[str, Any] = {
        "code": code,
        "message": message
    }
    if details:
        error_body["details"] = details

    raise HTTPException(status_code=status_code, detail={"error": error_body}, headers=headers)
