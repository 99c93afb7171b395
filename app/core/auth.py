"""
Authentication Utility - JWT, Password and OTP handling.

Provides:
- Password hashing with bcrypt
- Access/refresh JWT creation and verification (separate secrets)
- Numeric OTPs stored as SHA-256 hashes
- Refresh cookie helpers
- FastAPI dependencies for protected routes, role and ownership checks
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Depends, Request, Response, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import get_settings
from app.core.errors import ApiError
from app.db.mongodb import get_collection, COLLECTIONS
from app.services.mongo_service import parse_object_id, is_object_id

logger = logging.getLogger(__name__)

settings = get_settings()

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)

# Bearer token extractor. Missing headers are turned into our own 401.
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


# ============================================================
# JWT
# ============================================================

def _encode(user_id, secret: str, expires_delta: timedelta, token_type: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iss": settings.token_issuer,
        "iat": now,
        "exp": now + expires_delta,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id) -> str:
    """Create short-lived JWT access token."""
    return _encode(
        user_id, settings.access_secret,
        timedelta(minutes=settings.access_token_expire_minutes), "access"
    )


def create_refresh_token(user_id) -> str:
    """Create JWT refresh token. Only its hash is stored on the user."""
    return _encode(
        user_id, settings.refresh_secret,
        timedelta(days=settings.refresh_token_expire_days), "refresh"
    )


def _decode(token: str, secret: str, token_type: str, error_message: str) -> dict:
    try:
        payload = jwt.decode(
            token, secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.token_issuer,
        )
    except JWTError:
        raise ApiError(error_message, status.HTTP_401_UNAUTHORIZED)
    if payload.get("type") != token_type or not payload.get("sub"):
        raise ApiError(error_message, status.HTTP_401_UNAUTHORIZED)
    return payload


def decode_access_token(token: str) -> dict:
    return _decode(token, settings.access_secret, "access", "Invalid or expired access token")


def decode_refresh_token(token: str) -> dict:
    return _decode(token, settings.refresh_secret, "refresh", "Invalid or expired refresh token")


# ============================================================
# OTP / token hashing
# ============================================================

def hash_token(token) -> str:
    """SHA-256 hex digest, used for OTPs and refresh tokens."""
    return hashlib.sha256(str(token).encode("utf-8")).hexdigest()


def tokens_match(plain, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_token(plain), stored_hash)


def generate_otp(digits: int = 6) -> Tuple[str, str]:
    """Cryptographically secure numeric OTP. Returns (otp, otp_hash)."""
    otp = str(secrets.randbelow(10 ** digits)).zfill(digits)
    return otp, hash_token(otp)


# ============================================================
# Refresh cookie
# ============================================================

def set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path=settings.refresh_cookie_path,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path=settings.refresh_cookie_path,
    )


# ============================================================
# Dependencies
# ============================================================

def _load_user(user_id: str) -> Optional[dict]:
    if not is_object_id(user_id):
        return None
    user = get_collection(COLLECTIONS["users"]).find_one(
        {"_id": parse_object_id(user_id)},
        {"role": 1, "email_verified": 1, "company": 1}
    )
    if not user:
        return None
    return {
        "id": user["_id"],
        "role": user.get("role"),
        "email_verified": bool(user.get("email_verified")),
        "company": user.get("company"),
    }


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> dict:
    """
    FastAPI dependency - Get current authenticated user.

    Usage:
        @router.get("/protected")
        async def route(user: dict = Depends(get_current_user)):
            return user
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError("Not authorized", status.HTTP_401_UNAUTHORIZED)

    payload = decode_access_token(credentials.credentials)
    user = _load_user(payload["sub"])
    if not user:
        raise ApiError("User not found", status.HTTP_401_UNAUTHORIZED)
    return user


async def get_optional_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> Optional[dict]:
    """Dependency - current user if a valid bearer token was sent, else None."""
    if credentials is None:
        return None
    try:
        payload = decode_access_token(credentials.credentials)
    except ApiError:
        return None
    return _load_user(payload["sub"])


def require_role(*allowed_roles: str):
    """Dependency factory - requester's role must be in the allow-list."""

    async def role_checker(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] not in allowed_roles:
            raise ApiError("Forbidden: insufficient role", status.HTTP_403_FORBIDDEN)
        return user

    return role_checker


def require_role_or_owner(roles, collection: str, owner_field: str = "owner", param: str = "id"):
    """
    Dependency factory - role in allow-list OR requester owns the resource.

    The resource is loaded from `collection` by the path parameter `param`
    and its `owner_field` compared with the requester's id.
    """
    roles = tuple(roles)

    async def owner_checker(request: Request, user: dict = Depends(get_current_user)) -> dict:
        if user["role"] in roles:
            return user

        resource_id = request.path_params.get(param)
        if not resource_id:
            raise ApiError("Forbidden: missing resource identifier for ownership check", status.HTTP_403_FORBIDDEN)

        resource = get_collection(collection).find_one(
            {"_id": parse_object_id(resource_id)}, {owner_field: 1}
        )
        if not resource:
            raise ApiError("Resource not found", status.HTTP_404_NOT_FOUND)

        if resource.get(owner_field) != user["id"]:
            raise ApiError("Forbidden: you are not the owner", status.HTTP_403_FORBIDDEN)
        return user

    return owner_checker
