from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.api.endpoints.auth import get_current_user
from tabletop.core.database import get_db
from tabletop.core.errors import InvalidState, NotFound, StorageError
from tabletop.models.chat import ChatTab
from tabletop.models.user import User
from tabletop.schemas.chat import ChatTabRecord
from tabletop.services.events import ACTION_DELETE, ACTION_INSERT, ACTION_UPDATE
from tabletop.services.fanout import emit_change
from tabletop.services.membership import require_owner, require_participant
from tabletop.services.sessions import get_session
from tabletop.services.visibility import (
    can_view_tab,
    fetch_tab,
    normalize_allowed_roles,
    normalize_allowed_users,
)

router = APIRouter(tags=["chat-tabs"])


class ChatTabCreate(BaseModel):
    name: str
    allowed_roles: Optional[List[Any]] = None
    allowed_users: Optional[List[Any]] = None
    toast_enabled: bool = True


class ChatTabUpdate(BaseModel):
    name: Optional[str] = None
    allowed_roles: Optional[List[Any]] = None
    allowed_users: Optional[List[Any]] = None
    toast_enabled: Optional[bool] = None


def _restriction(values: list) -> Optional[list]:
    # an empty allow-list is stored as "unrestricted"
    return values or None


def _tab_or_404(db: Session, tab_id: str) -> ChatTab:
    tab = fetch_tab(db, tab_id)
    if tab is None:
        raise NotFound("chat tab not found")
    return tab


@router.get("/sessions/{session_id}/chat-tabs", response_model=List[ChatTabRecord])
async def get_chat_tabs(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    member = require_participant(db, session_id, current_user.id)
    tabs = (
        db.query(ChatTab)
        .filter(ChatTab.session_id == session_id)
        .order_by(ChatTab.is_default.desc(), ChatTab.created_at.asc())
        .all()
    )
    return [tab for tab in tabs if can_view_tab(tab, member.role, current_user.id)]


@router.post("/sessions/{session_id}/chat-tabs", response_model=ChatTabRecord, status_code=status.HTTP_201_CREATED)
async def create_chat_tab(
    session_id: str,
    body: ChatTabCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    require_owner(db, session_id, current_user.id)
    name = body.name.strip()
    if not name:
        raise InvalidState("tab name is required")
    tab = ChatTab(
        session_id=session_id,
        name=name,
        allowed_roles=_restriction(normalize_allowed_roles(body.allowed_roles)),
        allowed_users=_restriction(normalize_allowed_users(body.allowed_users)),
        toast_enabled=body.toast_enabled,
        is_default=False,
        created_by=current_user.id,
    )
    try:
        db.add(tab)
        db.commit()
        db.refresh(tab)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to create chat tab") from exc
    record = ChatTabRecord.model_validate(tab)
    emit_change("chat_tabs", ACTION_INSERT, record)
    return record


@router.patch("/chat-tabs/{tab_id}", response_model=ChatTabRecord)
async def update_chat_tab(
    tab_id: str,
    body: ChatTabUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tab = _tab_or_404(db, tab_id)
    require_owner(db, tab.session_id, current_user.id)
    changes = body.model_dump(exclude_unset=True)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise InvalidState("tab name is required")
        tab.name = name
    if "allowed_roles" in changes:
        tab.allowed_roles = _restriction(normalize_allowed_roles(changes["allowed_roles"]))
    if "allowed_users" in changes:
        tab.allowed_users = _restriction(normalize_allowed_users(changes["allowed_users"]))
    if changes.get("toast_enabled") is not None:
        tab.toast_enabled = changes["toast_enabled"]
    tab.updated_at = datetime.now()
    try:
        db.commit()
        db.refresh(tab)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to update chat tab") from exc
    record = ChatTabRecord.model_validate(tab)
    emit_change("chat_tabs", ACTION_UPDATE, record)
    return record


@router.delete("/chat-tabs/{tab_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat_tab(tab_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tab = _tab_or_404(db, tab_id)
    require_owner(db, tab.session_id, current_user.id)
    if tab.is_default:
        raise InvalidState("the default tab cannot be deleted")
    record = ChatTabRecord.model_validate(tab)
    try:
        db.delete(tab)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to delete chat tab") from exc
    emit_change("chat_tabs", ACTION_DELETE, record)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
