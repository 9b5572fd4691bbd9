from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tabletop.api.endpoints.auth import get_current_user
from tabletop.core.database import get_db
from tabletop.models.user import User
from tabletop.schemas.session import ParticipantRecord, ParticipantWithProfile, SessionDetail, SessionRecord
from tabletop.services import sessions as session_service

router = APIRouter(prefix="/sessions", tags=["sessions"])


class SessionCreate(BaseModel):
    name: str
    visibility: Optional[str] = None


class JoinRequest(BaseModel):
    join_token: Optional[str] = None


class ParticipantCreate(BaseModel):
    user_id: int


@router.post("", response_model=SessionDetail, status_code=status.HTTP_201_CREATED)
async def create_session(
    session: SessionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    created = session_service.create_session(db, current_user.id, session.name, session.visibility)
    return session_service.session_detail(db, created.id, current_user.id)


@router.get("", response_model=List[SessionRecord])
async def get_sessions(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return session_service.list_sessions(db, current_user.id)


@router.get("/owned", response_model=List[SessionRecord])
async def get_owned_sessions(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return session_service.list_owned_sessions(db, current_user.id)


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return session_service.session_detail(db, session_id, current_user.id)


@router.post("/{session_id}/join", status_code=status.HTTP_204_NO_CONTENT)
async def join_session(
    session_id: str,
    body: Optional[JoinRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    join_token = body.join_token if body else None
    session_service.join_session(db, session_id, current_user.id, join_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{session_id}/participants", response_model=ParticipantRecord)
async def add_participant(
    session_id: str,
    body: ParticipantCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    participant = session_service.add_participant(db, session_id, current_user.id, body.user_id)
    if participant is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return participant


@router.get("/{session_id}/participants", response_model=List[ParticipantWithProfile])
async def get_participants(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return session_service.list_participants(db, session_id, current_user.id)
