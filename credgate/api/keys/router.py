"""API Key Management Router - generate, list, revoke.

The caller is identified by the `X-Wallet-Address` header; keys are scoped
to that wallet. All three routes share a per-IP rate limit.
"""
import logging
import re
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from credgate.dependencies import get_key_manager, get_management_limiter, get_service_settings
from credgate.domain import tiers
from credgate.domain.interfaces import RateLimitStore, bounded
from credgate.domain.keys.manager import KeyLifecycleManager, creation_response
from credgate.errors import InvalidKeyRequest, StoreUnavailable, raise_credgate_error
from credgate.middleware.auth_public import client_ip
from credgate.settings import Settings

logger = logging.getLogger(__name__)

WALLET_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

router = APIRouter()


class GenerateKeyRequest(BaseModel):
    name: Optional[str] = None
    tier: Optional[str] = None
    expiresInDays: Optional[int] = None


class RevokeKeyRequest(BaseModel):
    keyId: Optional[str] = None


async def management_rate_limit(
    request: Request,
    limiter: RateLimitStore = Depends(get_management_limiter),
    settings: Settings = Depends(get_service_settings),
) -> None:
    ip = client_ip(request) or "unknown"
    try:
        result = await bounded(
            limiter.check_limit(f"mgmt:ip:{ip}", settings.MANAGEMENT_RATE_LIMIT_PER_MIN, 60),
            settings.STORE_TIMEOUT_SECONDS,
        )
    except StoreUnavailable as e:
        logger.error(f"Management rate limit check failed: {e}")
        raise_credgate_error("SERVICE_UNAVAILABLE", 503, StoreUnavailable.public_message)
    if not result.allowed:
        raise_credgate_error("RATE_LIMITED", 429, "Too many requests", headers={"Retry-After": "60"})


def wallet_address(x_wallet_address: Optional[str] = Header(None)) -> str:
    if not x_wallet_address:
        raise_credgate_error("AUTH_INVALID", 401, "Missing X-Wallet-Address header")
    if not WALLET_ADDRESS_RE.match(x_wallet_address):
        raise_credgate_error("INVALID_REQUEST", 400, "Invalid wallet address format")
    return x_wallet_address.lower()


@router.post("/generate", status_code=201, dependencies=[Depends(management_rate_limit)])
async def generate_key(
    body: GenerateKeyRequest,
    request: Request,
    owner: str = Depends(wallet_address),
    manager: KeyLifecycleManager = Depends(get_key_manager),
) -> Any:
    """Issue a key. The raw key appears in this response only."""
    tier = body.tier or "intelligence"
    if not tiers.is_known_tier(tier):
        raise_credgate_error(
            "INVALID_REQUEST", 400, "Invalid tier",
            details={"validTiers": sorted(tiers.TIERS)},
        )
    try:
        issued = await manager.create(
            owner,
            body.name,
            tier,
            expires_in_days=body.expiresInDays,
            source_ip=client_ip(request),
        )
    except InvalidKeyRequest as e:
        raise_credgate_error("INVALID_REQUEST", 400, str(e))
    except StoreUnavailable:
        raise_credgate_error("SERVICE_UNAVAILABLE", 503, StoreUnavailable.public_message)
    return creation_response(issued)


@router.get("/list", dependencies=[Depends(management_rate_limit)])
async def list_keys(
    owner: str = Depends(wallet_address),
    manager: KeyLifecycleManager = Depends(get_key_manager),
):
    try:
        keys = await manager.list(owner)
    except StoreUnavailable:
        raise_credgate_error("SERVICE_UNAVAILABLE", 503, StoreUnavailable.public_message)
    return {"keys": [k.to_public() for k in keys]}


@router.post("/revoke", dependencies=[Depends(management_rate_limit)])
async def revoke_key(
    body: RevokeKeyRequest,
    request: Request,
    owner: str = Depends(wallet_address),
    manager: KeyLifecycleManager = Depends(get_key_manager),
):
    if not body.keyId:
        raise_credgate_error("INVALID_REQUEST", 400, "keyId is required")
    try:
        revoked = await manager.revoke(body.keyId, owner, source_ip=client_ip(request))
    except StoreUnavailable:
        raise_credgate_error("SERVICE_UNAVAILABLE", 503, StoreUnavailable.public_message)
    if not revoked:
        raise_credgate_error("NOT_FOUND", 404, "Key not found or already revoked")
    return {"success": True, "keyId": body.keyId}
