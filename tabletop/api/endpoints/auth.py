from datetime import datetime, timedelta
import logging
from typing import Optional, cast

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tabletop.core.config import settings
from tabletop.core.database import get_db
from tabletop.core.errors import Unauthorized
from tabletop.core.security import create_access_token, decode_username, get_password_hash, verify_password
from tabletop.models.user import User
from tabletop.services.activity_log import log_login
from tabletop.services.event_publisher import publish_user_registered

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

ACCESS_TOKEN_COOKIE = "access_token"


class UserCreate(BaseModel):
    username: str
    password: str
    display_name: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


def get_user(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
    """Users without a hash type predate bcrypt and must reset their password."""
    user = get_user(db, username)
    if user is None or user.hash_type is None:
        return None
    if not verify_password(password, str(user.password_hash)):
        return None
    return user


def _request_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if header and header.startswith("Bearer "):
        return header
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


async def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _request_token(request)
    if not token:
        raise Unauthorized("Could not validate credentials")
    username = decode_username(token)
    if username is None:
        raise Unauthorized("Could not validate credentials")
    user = get_user(db, username)
    if user is None:
        raise Unauthorized("Could not validate credentials")
    return user


def _issue_token(response: Response, username: str) -> TokenResponse:
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(data={"sub": username}, expires_delta=access_token_expires)
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=f"Bearer {access_token}",
        httponly=True,
        secure=False,  # Set to True in production with HTTPS
        samesite="lax",
        max_age=int(access_token_expires.total_seconds()),
    )
    return TokenResponse(access_token=access_token)


@router.post("/register", response_model=TokenResponse)
async def register(response: Response, user: UserCreate, db: Session = Depends(get_db)):
    if not user.username.strip() or not user.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    if get_user(db, user.username):
        raise HTTPException(status_code=400, detail="Username already registered")
    new_user = User(
        username=user.username,
        display_name=user.display_name,
        password_hash=get_password_hash(user.password),
        hash_type="bcrypt",
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    new_user_id = cast(int, new_user.id)
    new_user_username = cast(str, new_user.username)
    publish_user_registered(new_user_id, new_user_username)
    log_login(new_user_id, new_user_username)
    return _issue_token(response, new_user_username)


@router.post("/login", response_model=TokenResponse)
async def login(response: Response, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = authenticate_user(db, form_data.username, form_data.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_username = cast(str, user.username)
    log_login(cast(int, user.id), user_username)
    return _issue_token(response, user_username)


@router.get("/me", response_model=UserResponse)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user
