"""
Bearer token verification against the PreSuite identity provider.

Tokens are verified locally with the shared HS256 secret when one is
configured; otherwise (or when local verification fails) the hub's
``/verify`` endpoint is asked.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from jose import ExpiredSignatureError, JWTError, jwt

from presocial.models.dtos import AuthUser

logger = logging.getLogger(__name__)


class IdentityVerifier:
    """Maps a bearer token to an :class:`AuthUser`, or None when invalid."""

    def __init__(
        self,
        secret: Optional[str] = None,
        issuer: str = "presuite",
        algorithm: str = "HS256",
        auth_api_url: str = "https://presuite.eu/api/auth",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret = secret
        self.issuer = issuer
        self.algorithm = algorithm
        self.auth_api_url = auth_api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

        if not secret:
            logger.warning("JWT_SECRET not configured. Token verification will fall back to remote validation.")

    @classmethod
    def from_settings(cls, settings) -> "IdentityVerifier":
        return cls(
            secret=settings.JWT_SECRET,
            issuer=settings.JWT_ISSUER,
            algorithm=settings.JWT_ALGORITHM,
            auth_api_url=settings.AUTH_API_URL,
            timeout=settings.AUTH_TIMEOUT_SECONDS,
        )

    @property
    def local_enabled(self) -> bool:
        return bool(self.secret)

    async def close(self) -> None:
        await self.client.aclose()

    def verify_locally(self, token: str) -> Optional[AuthUser]:
        if not self.secret:
            return None

        try:
            payload: Dict[str, Any] = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            logger.debug("Token expired")
            return None
        except JWTError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        if not payload.get("sub") or not payload.get("email"):
            logger.warning("Token missing required fields")
            return None

        return AuthUser(
            id=str(payload["sub"]),
            email=payload["email"],
            name=payload.get("name"),
            org_id=payload.get("org_id"),
        )

    async def verify_remotely(self, token: str) -> Optional[AuthUser]:
        try:
            response = await self.client.get(
                f"{self.auth_api_url}/verify",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
            if response.status_code != 200:
                return None

            data = response.json()
            user = data.get("user") if data.get("valid") else None
            if not user:
                return None

            return AuthUser(
                id=str(user["id"]),
                email=user["email"],
                name=user.get("name"),
                org_id=user.get("org_id"),
            )
        except Exception as e:
            logger.error(f"Remote token verification failed: {e}")
            return None

    async def verify(self, token: str) -> Optional[AuthUser]:
        """Resolve ``token`` to a user, trying local verification first."""
        user = self.verify_locally(token)
        if user is not None:
            return user
        return await self.verify_remotely(token)
