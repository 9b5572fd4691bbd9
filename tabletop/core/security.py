from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from tabletop.core.config import settings
from tabletop.core.database import SessionLocal
from tabletop.models.user import User

pwd_context = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password using bcrypt only. Returns False if hash is invalid."""
    try:
        # bcrypt hashes start with $2a$, $2b$, or $2y$
        if not hashed_password.startswith("$2"):
            return False
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def strip_bearer(token: str) -> str:
    if token.startswith("Bearer "):
        return token[7:]
    return token


def decode_username(token: str) -> Optional[str]:
    """Return the ``sub`` claim of a valid token, or None."""
    if not token:
        return None
    try:
        payload = jwt.decode(strip_bearer(token), settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    username = payload.get("sub")
    if not isinstance(username, str):
        return None
    return username


def _load_user(username: str) -> Optional[User]:
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.username == username).first()
        if user is not None:
            db.expunge(user)
        return user
    finally:
        db.close()


async def verify_token(token: str) -> Optional[User]:
    """Token verifier used by the realtime gateway. Never raises for a bad token."""
    username = decode_username(token)
    if username is None:
        return None
    return await run_in_threadpool(_load_user, username)
