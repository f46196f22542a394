"""
Identity context for FastAPI routes.

Tokens are issued by the external identity provider; this module only
verifies them and exposes the caller identity (the `sub` claim). Roles are
never read from the token: the admin flag lives on the caller's profile.
"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from loguru import logger

from delegation.config import AuthSettings


class IdentityVerifier:
    """Verifies bearer tokens issued by the identity provider"""

    def __init__(self, settings: Optional[AuthSettings] = None):
        self.settings = settings or AuthSettings()
        if not self.settings.jwt_secret:
            logger.warning("JWT_SECRET not set - every bearer token will be rejected")
        elif len(self.settings.jwt_secret) < 32:
            logger.warning("JWT_SECRET is less than 32 bytes - use a stronger secret!")

    def verify_token(self, token: str) -> Optional[dict]:
        """Decode and validate a token; None when invalid or expired"""
        if not self.settings.jwt_secret:
            return None
        try:
            return jwt.decode(
                token,
                key=self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                options={"require": ["sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

    def identity_from(self, payload: dict) -> Optional[str]:
        identity = payload.get(self.settings.identity_claim)
        return str(identity) if identity else None


_verifier: Optional[IdentityVerifier] = None


def get_verifier() -> IdentityVerifier:
    global _verifier
    if _verifier is None:
        _verifier = IdentityVerifier()
    return _verifier


async def verify_jwt_token(authorization: str = Header(None)) -> dict:
    """
    Dependency: Verify JWT token and return payload.

    Expected format:
        Authorization: Bearer <JWT_TOKEN>
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authorization token")

    token = authorization[len("Bearer "):].strip()
    payload = get_verifier().verify_token(token)

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def current_identity(payload: dict = Depends(verify_jwt_token)) -> str:
    """
    Dependency: the caller's stable identity.

    Every operation takes the caller from here, never from the request body.
    """
    identity = get_verifier().identity_from(payload)
    if not identity:
        logger.warning("Token missing identity claim")
        raise HTTPException(status_code=401, detail="Invalid token: missing identity")

    logger.debug(f"Authenticated user: {identity}")
    return identity
