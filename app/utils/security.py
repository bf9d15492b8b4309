from datetime import timedelta

from jose import JWTError, ExpiredSignatureError, jwt
from passlib.context import CryptContext

from app.config import settings
from app.utils.exceptions import TokenExpiredException, UnauthorizedException
from app.utils.timeutil import utc_now

# ─── Password Hashing ─────────────────────────────────────────────────────────
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password using bcrypt."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain-text password against a bcrypt hash."""
    return pwd_context.verify(plain_password, hashed_password)


# ─── JWT ──────────────────────────────────────────────────────────────────────
def create_access_token(user_id: int, role: str, expires_minutes: int | None = None) -> str:
    """
    Create a JWT access token.
    Payload: sub (user_id), role, type, exp
    """
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = utc_now() + timedelta(minutes=minutes)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_access_token(token: str) -> dict:
    """
    Decode and validate a JWT access token.
    Raises 401 if invalid, 401 (TOKEN_EXPIRED) if expired.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredException()
    except JWTError:
        raise UnauthorizedException("Invalid or malformed token")
    if payload.get("type") != "access":
        raise UnauthorizedException("Invalid token type")
    return payload
