"""
Credentials for the two kinds of callers.

Session tokens identify a browser session as the holder of seat locks. They are
bearer tokens only: possessing one lets you act on that session's holds and
nothing else.

Admin operations bypass the holder guard, so they need a real credential: the
admin passphrase is checked against a pbkdf2 hash and exchanged for a signed,
expiring JWT with role=admin.
"""

import re
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from seatlock.core.config import get_settings
from seatlock.core.logging import bind_session

ADMIN_ROLE = "admin"
SESSION_HEADER = "X-Session-Token"
_SESSION_TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-]{8,128}$")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


@lru_cache()
def _admin_passphrase_hash() -> str:
    return hash_password(get_settings().ADMIN_PASSPHRASE)


def verify_admin_passphrase(passphrase: str) -> bool:
    return verify_password(passphrase, _admin_passphrase_hash())


def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload: dict[str, Any] = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    if not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload


def require_admin(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    """Dependency: returns the admin subject or fails with 401/403."""
    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_token(creds.credentials)
    if payload.get("role") != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return str(payload["sub"])


def new_session_token() -> str:
    return secrets.token_urlsafe(16)


def is_valid_session_token(token: str) -> bool:
    return bool(_SESSION_TOKEN_RE.match(token))


async def get_session_token(x_session_token: Optional[str] = Header(default=None)) -> str:
    """Dependency: the caller's session token from the X-Session-Token header."""
    if not x_session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {SESSION_HEADER} header",
        )
    if not is_valid_session_token(x_session_token):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed session token")
    bind_session(x_session_token)
    return x_session_token


async def get_optional_session_token(x_session_token: Optional[str] = Header(default=None)) -> Optional[str]:
    """Dependency for public reads: the session token when a well-formed one is sent."""
    if x_session_token and is_valid_session_token(x_session_token):
        bind_session(x_session_token)
        return x_session_token
    return None
