"""
FastAPI dependencies exposing the objects created in the application lifespan.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request

from presocial.core.cache import CacheStore, CacheTTL
from presocial.core.ledger import DirtyLedger
from presocial.integrations.identity import IdentityVerifier
from presocial.integrations.lemmy import LemmyClient
from presocial.models.dtos import AuthUser

logger = logging.getLogger(__name__)


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def get_cache_ttl(request: Request) -> CacheTTL:
    return request.app.state.cache_ttl


def get_ledger(request: Request) -> DirtyLedger:
    return request.app.state.ledger


def get_lemmy(request: Request) -> LemmyClient:
    return request.app.state.lemmy


def get_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.verifier


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


async def require_user(
    request: Request,
    verifier: IdentityVerifier = Depends(get_verifier),
) -> AuthUser:
    """
    The authenticated user.

    Raises:
        HTTPException: 401 when the token is missing or invalid
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = await verifier.verify(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user
