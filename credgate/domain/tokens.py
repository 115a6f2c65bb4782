"""Bearer token generation, digesting and parsing.

Format: `{prefix}{64 lowercase hex}` where the hex is 32 bytes from `secrets`.
Only the digest is ever persisted or compared.
"""
import hashlib
import hmac
import re
import secrets
from typing import NamedTuple, Optional

DEFAULT_PREFIX = "mf_live_"
TOKEN_BYTES = 32
DISPLAY_HEX_CHARS = 8
ELLIPSIS = "…"

_TOKEN_BODY_RE = re.compile(r"^[0-9a-f]{64}$")


class GeneratedToken(NamedTuple):
    raw_token: str
    digest: str
    display_prefix: str

    def __repr__(self) -> str:
        return f"GeneratedToken(display_prefix={self.display_prefix!r})"


class TokenGenerator:
    """Issues bearer tokens and computes their one-way digests.

    With a pepper the digest is HMAC-SHA256 keyed by the pepper, otherwise a
    plain SHA-256 of the full token. Changing the pepper invalidates every
    stored digest.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, pepper: Optional[str] = None):
        if not prefix:
            raise ValueError("Token prefix must be non-empty")
        self.prefix = prefix
        self._pepper = pepper.encode() if pepper else None

    def generate(self) -> GeneratedToken:
        body = secrets.token_hex(TOKEN_BYTES)
        raw_token = f"{self.prefix}{body}"
        return GeneratedToken(
            raw_token=raw_token,
            digest=self.digest(raw_token),
            display_prefix=f"{self.prefix}{body[:DISPLAY_HEX_CHARS]}{ELLIPSIS}",
        )

    def digest(self, raw_token: str) -> str:
        if self._pepper:
            return hmac.new(self._pepper, raw_token.encode(), hashlib.sha256).hexdigest()
        return hashlib.sha256(raw_token.encode()).hexdigest()

    def is_valid_format(self, candidate: Optional[str]) -> bool:
        """Structural check only. Never a substitute for a digest lookup."""
        if not candidate or not isinstance(candidate, str):
            return False
        if not candidate.startswith(self.prefix):
            return False
        return bool(_TOKEN_BODY_RE.match(candidate[len(self.prefix):]))


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an exact `Bearer <token>` header, else None."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
