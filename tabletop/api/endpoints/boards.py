from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.api.endpoints.auth import get_current_user
from tabletop.core.database import get_db
from tabletop.core.errors import NotFound, StorageError
from tabletop.models.board import DEFAULT_TOKEN_PRIORITY, DEFAULT_TOKEN_SIZE, Token
from tabletop.models.user import User
from tabletop.schemas.board import BoardRecord, TokenRecord
from tabletop.services.boards import get_board, upsert_board
from tabletop.services.events import ACTION_DELETE, ACTION_INSERT, ACTION_UPDATE
from tabletop.services.fanout import emit_change
from tabletop.services.membership import require_participant
from tabletop.services.sessions import get_session

router = APIRouter(tags=["board"])


class BoardUpdate(BaseModel):
    background_url: Optional[str] = None
    grid_enabled: Optional[bool] = None
    grid_background_color: Optional[str] = None
    grid_background_image_url: Optional[str] = None
    grid_background_blur: Optional[bool] = None


class TokenCreate(BaseModel):
    name: str
    x: float
    y: float
    width: int = DEFAULT_TOKEN_SIZE
    height: int = DEFAULT_TOKEN_SIZE
    rotation: float = 0
    image_url: Optional[str] = None
    show_name: bool = True
    priority: int = DEFAULT_TOKEN_PRIORITY


class TokenUpdate(BaseModel):
    name: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    rotation: Optional[float] = None
    image_url: Optional[str] = None
    show_name: Optional[bool] = None
    priority: Optional[int] = None


def _token_or_404(db: Session, token_id: str) -> Token:
    token = db.query(Token).filter(Token.id == token_id).first()
    if token is None:
        raise NotFound("token not found")
    return token


@router.get("/sessions/{session_id}/board", response_model=Optional[BoardRecord])
async def read_board(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    require_participant(db, session_id, current_user.id)
    return get_board(db, session_id)


@router.post("/sessions/{session_id}/board", response_model=BoardRecord)
async def save_board(
    session_id: str,
    body: BoardUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    require_participant(db, session_id, current_user.id)
    return upsert_board(db, session_id, body.model_dump(exclude_unset=True))


@router.get("/sessions/{session_id}/tokens", response_model=List[TokenRecord])
async def get_tokens(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    require_participant(db, session_id, current_user.id)
    return (
        db.query(Token)
        .filter(Token.session_id == session_id)
        .order_by(Token.priority.asc(), Token.updated_at.asc())
        .all()
    )


@router.post("/sessions/{session_id}/tokens", response_model=TokenRecord, status_code=status.HTTP_201_CREATED)
async def create_token(
    session_id: str,
    body: TokenCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    require_participant(db, session_id, current_user.id)
    token = Token(session_id=session_id, **body.model_dump())
    try:
        db.add(token)
        db.commit()
        db.refresh(token)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to create token") from exc
    record = TokenRecord.model_validate(token)
    emit_change("tokens", ACTION_INSERT, record)
    return record


@router.patch("/tokens/{token_id}", response_model=TokenRecord)
async def update_token(
    token_id: str,
    body: TokenUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    token = _token_or_404(db, token_id)
    require_participant(db, token.session_id, current_user.id)
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(token, key, value)
    token.updated_at = datetime.now()
    try:
        db.commit()
        db.refresh(token)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to update token") from exc
    record = TokenRecord.model_validate(token)
    emit_change("tokens", ACTION_UPDATE, record)
    return record


@router.delete("/tokens/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_token(token_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    token = _token_or_404(db, token_id)
    require_participant(db, token.session_id, current_user.id)
    record = TokenRecord.model_validate(token)
    try:
        db.delete(token)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to delete token") from exc
    emit_change("tokens", ACTION_DELETE, record)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
