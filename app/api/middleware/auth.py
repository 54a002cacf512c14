"""
API Key Authentication

Resolves the X-API-Key header to a staff Principal. Keys are configured
as SHA-256 hashes with a role (STAFF_API_KEYS="<sha256>:<role>,...") so
plaintext keys never live in configuration.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from app.config import settings
from app.core.scheduling.models import Principal, Role

logger = logging.getLogger(__name__)

# API Key header scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def generate_api_key() -> str:
    """
    Generate a new staff API key.

    Format: ap_{32 random bytes as base64}
    """
    return f"ap_{secrets.token_urlsafe(32)}"


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key for storage.

    Uses SHA-256.
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


def mask_api_key(api_key: str) -> str:
    """
    Mask API key for logging.

    Shows: ap_abc...xyz (first 6 chars + last 3 chars)
    """
    if len(api_key) < 12:
        return "***"
    return f"{api_key[:6]}...{api_key[-3:]}"


def parse_staff_keys(raw: str) -> dict[str, Role]:
    """
    Parse STAFF_API_KEYS into {key_hash: role}.

    Malformed entries are skipped with a warning.
    """
    keys: dict[str, Role] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key_hash, _, role = entry.partition(":")
        try:
            keys[key_hash.strip().lower()] = Role(role.strip().lower())
        except ValueError:
            logger.warning(f"Ignoring staff key entry with unknown role '{role}'")
    return keys


def get_staff_keys() -> dict[str, Role]:
    """FastAPI dependency providing configured staff keys."""
    return parse_staff_keys(settings.staff_api_keys)


def resolve_principal(api_key: str, staff_keys: dict[str, Role]) -> Optional[Principal]:
    """
    Look up the principal for an API key.

    Uses constant-time comparison against every configured hash.
    """
    key_hash = hash_api_key(api_key)
    for stored_hash, role in staff_keys.items():
        if hmac.compare_digest(stored_hash, key_hash):
            return Principal(id=f"staff-{stored_hash[:8]}", role=role)
    return None


async def require_staff(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
    staff_keys: dict[str, Role] = Depends(get_staff_keys),
) -> Principal:
    """
    FastAPI dependency that requires an admin or manager API key.

    Raises:
        HTTPException 401: No API key provided
        HTTPException 403: Unknown key or insufficient role

    Usage:
        @router.get("/protected")
        async def protected(principal: Principal = Depends(require_staff)):
            print(principal.role)
    """
    client_ip = request.client.host if request.client else "unknown"

    if not api_key:
        logger.warning(f"Auth failed: No API key provided | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    principal = resolve_principal(api_key, staff_keys)
    if principal is None:
        logger.warning(f"Auth failed: Invalid API key | Key: {mask_api_key(api_key)} | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    if not principal.is_staff:
        logger.warning(f"Auth failed: Role {principal.role.value} is not staff | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff role required",
        )

    request.state.principal = principal
    logger.debug(f"Auth success | Principal: {principal.id} | Role: {principal.role.value} | IP: {client_ip}")
    return principal


async def require_admin(principal: Principal = Depends(require_staff)) -> Principal:
    """FastAPI dependency that requires the admin role."""
    if principal.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return principal


async def optional_staff(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
    staff_keys: dict[str, Role] = Depends(get_staff_keys),
) -> Optional[Principal]:
    """
    FastAPI dependency for optional staff authentication.

    Returns None if no valid staff key is provided (doesn't raise error).
    """
    if not api_key:
        return None

    try:
        return await require_staff(request, api_key, staff_keys)
    except HTTPException:
        return None
