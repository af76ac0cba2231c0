# src/auth.py
"""
FlightSurety Authentication Module

- Admin API key for the owner-only HTTP endpoints
- Per-identity credentials for oracles and airlines: the acting identity is
  taken from the presented key, never from the request body

Security-critical: Uses constant-time comparison to prevent timing attacks
"""

import hashlib
import logging
import secrets
from typing import Callable, Dict, Optional

from fastapi import Header, HTTPException, Request, status

from src.errors import AlreadyRegistered

logger = logging.getLogger("flightsurety.auth")

IDENTITY_KEY_HEADER = "X-Identity-Key"


def check_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a presented key with the configured one.

    No configured key means authentication is disabled (development mode).
    """
    if not expected:
        return True
    if not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def verify_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> str:
    """
    FastAPI dependency for admin endpoints - validates the X-API-Key header
    against the key configured on the running app.

    Raises:
        HTTPException: 401 if key missing, 403 if key invalid
    """
    expected = request.app.state.settings.API_KEY
    if not expected:
        logger.debug("Authentication bypassed - FLIGHTSURETY_API_KEY not configured")
        return "dev-bypass"

    if not x_api_key:
        logger.warning("Request rejected - missing X-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-API-Key header",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not check_api_key(x_api_key, expected):
        # Log partial key for debugging (first 8 chars only)
        logger.warning(f"Request rejected - invalid API key: {x_api_key[:8]}...")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")

    return x_api_key


def generate_api_key(length: int = 32) -> str:
    """
    Generate a cryptographically secure API key.

    Usage:
        python -c "from src.auth import generate_api_key; print(generate_api_key())"
    """
    return secrets.token_urlsafe(length)


# =============================================================================
# Per-identity Credentials
# =============================================================================

def _digest(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class CredentialStore:
    """
    Keys issued to oracles or airlines, one per identity.

    Only a SHA-256 digest of each key is kept. The plain key is returned once,
    when it is issued.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._digests: Dict[str, str] = {}

    def issue(self, identity: str, key: Optional[str] = None) -> str:
        """
        Issue a credential for identity; a key is generated unless given.

        Raises:
            AlreadyRegistered: identity already holds a credential
        """
        if identity in self._digests:
            raise AlreadyRegistered(f"{self.kind} credential", identity)
        key = key or generate_api_key()
        self._digests[identity] = _digest(key)
        logger.info(f"Credential issued for {self.kind} {identity}")
        return key

    def has(self, identity: str) -> bool:
        return identity in self._digests

    def resolve(self, key: Optional[str]) -> Optional[str]:
        """Identity holding key, or None"""
        if not key:
            return None
        presented = _digest(key)
        match = None
        for identity, stored in self._digests.items():
            if secrets.compare_digest(stored, presented):
                match = identity
        return match

    def count(self) -> int:
        return len(self._digests)


def require_identity(store_name: str) -> Callable:
    """
    Build a FastAPI dependency resolving the caller's identity from the
    X-Identity-Key header against app.state.<store_name>.

    The dependency raises 401 when the header is missing and 403 when the
    key belongs to nobody in that store.
    """

    async def dependency(
        request: Request,
        x_identity_key: Optional[str] = Header(None, alias=IDENTITY_KEY_HEADER),
    ) -> str:
        store: CredentialStore = getattr(request.app.state, store_name)
        if not x_identity_key:
            logger.warning(f"Request rejected - missing {IDENTITY_KEY_HEADER} header")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Missing {IDENTITY_KEY_HEADER} header",
                headers={"WWW-Authenticate": "ApiKey"},
            )

        identity = store.resolve(x_identity_key)
        if identity is None:
            logger.warning(f"Request rejected - unknown {store.kind} key: {x_identity_key[:8]}...")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Invalid {store.kind} credential",
            )
        return identity

    return dependency
