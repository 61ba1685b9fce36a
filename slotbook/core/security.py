from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from slotbook.core.config import settings

# PBKDF2 avoids bcrypt backend/version issues and the 72-byte bcrypt input limit.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGO = "HS256"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _token(subject: str, token_type: str, expires: timedelta, role: str | None = None) -> str:
    payload = {"sub": subject, "type": token_type, "exp": datetime.now(timezone.utc) + expires}
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def create_access_token(subject: str, role: str | None = None, expires_minutes: int | None = None) -> str:
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    return _token(subject, "access", timedelta(minutes=minutes), role)


def create_refresh_token(subject: str, expires_days: int | None = None) -> str:
    days = settings.REFRESH_TOKEN_EXPIRE_DAYS if expires_days is None else expires_days
    return _token(subject, "refresh", timedelta(days=days))


def decode_token(token: str, expected_type: str | None = None) -> dict:
    """Raises JWTError for bad signatures, expiry, or a token of the wrong type."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
    if expected_type and payload.get("type") != expected_type:
        raise JWTError(f"expected {expected_type} token")
    return payload
