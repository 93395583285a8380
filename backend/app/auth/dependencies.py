"""
JWT verification dependencies for FastAPI.
Validates Supabase-issued JWT tokens and turns the subject into the owner
identity carried by every workflow, run and step.
"""

import logging
from typing import Optional
from functools import lru_cache
from fastapi import Depends, Header
from pydantic import BaseModel
import jwt
from jwt import PyJWKClient

from app.auth.access import AccessContext
from app.config import Settings
from app.errors import Unauthorized

logger = logging.getLogger(__name__)


class User(BaseModel):
    """User information extracted from JWT."""
    sub: str  # User ID (subject), used as the owner id
    email: Optional[str] = None
    role: Optional[str] = None


def get_supabase_jwks_url() -> str:
    """Get the JWKS URL from Supabase URL.

    Supabase JWKS endpoint format: https://<project-ref>.supabase.co/auth/v1/.well-known/jwks.json
    """
    supabase_url = Settings.supabase_url()
    if not supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required")
    return f"{supabase_url}/auth/v1/.well-known/jwks.json"


@lru_cache(maxsize=1)
def get_jwks_client() -> PyJWKClient:
    """Get or create cached JWKS client."""
    jwks_url = get_supabase_jwks_url()
    logger.info(f"JWKS URL: {jwks_url}")
    return PyJWKClient(jwks_url)


def verify_jwt(token: str) -> User:
    """
    Verify a Supabase JWT token and extract user information.

    Raises:
        Unauthorized: If token is invalid, expired, or verification fails
    """
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        issuer = Settings.jwt_issuer()
        if not issuer:
            raise ValueError("SUPABASE_JWT_ISSUER or SUPABASE_URL environment variable is required")

        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=Settings.jwt_audience(),
            issuer=issuer,
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise Unauthorized(f"Invalid token: {str(e)}")
    except Exception as e:
        # JWKS fetch errors or missing configuration
        logger.error(f"Token verification failed: {e}")
        raise Unauthorized(f"Token verification failed: {str(e)}")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Token missing 'sub' claim")

    return User(
        sub=user_id,
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
    )


async def get_current_user(authorization: str = Header(..., description="Bearer token")) -> User:
    """
    FastAPI dependency to extract and verify JWT token from Authorization header.

    Usage:
        @router.get("/protected")
        async def protected_endpoint(user: User = Depends(get_current_user)):
            return {"user_id": user.sub}
    """
    if not authorization.startswith("Bearer "):
        raise Unauthorized("Authorization header must start with 'Bearer '")

    token = authorization[7:].strip()
    if not token:
        raise Unauthorized("Token is required")

    return verify_jwt(token)


def get_access_context(user: User = Depends(get_current_user)) -> AccessContext:
    """The caller's ownership context; every record read or write goes through it."""
    return AccessContext(owner_id=user.sub)
