"""Session lifecycle: creation, discovery, detail visibility and joining."""
import logging
import secrets
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.core.config import settings
from tabletop.core.errors import Forbidden, NotFound, StorageError
from tabletop.models.chat import ChatTab
from tabletop.models.participant import ROLE_OWNER, ROLE_PARTICIPANT, Participant
from tabletop.models.session import (
    VISIBILITY_LINK,
    VISIBILITY_PRIVATE,
    VISIBILITY_PUBLIC,
    PlaySession,
)
from tabletop.models.user import User
from tabletop.schemas.chat import ChatTabRecord
from tabletop.schemas.session import (
    ParticipantRecord,
    ParticipantWithProfile,
    SessionDetail,
    SessionRecord,
)
from tabletop.services import membership
from tabletop.services.activity_log import log_join, log_session_created
from tabletop.services.events import ACTION_INSERT
from tabletop.services.fanout import emit_change
from tabletop.services.visibility import normalize_visibility

logger = logging.getLogger(__name__)

JOIN_TOKEN_BYTES = 16


def new_join_token() -> str:
    return secrets.token_hex(JOIN_TOKEN_BYTES)


def get_session(db: Session, session_id: str) -> PlaySession:
    try:
        session = db.query(PlaySession).filter(PlaySession.id == session_id).first()
    except SQLAlchemyError as exc:
        raise StorageError("failed to load session") from exc
    if session is None:
        raise NotFound("session not found")
    return session


def create_session(db: Session, user_id: int, name: str, visibility: Optional[str]) -> PlaySession:
    """Create a session owned by ``user_id``, with its default chat tab."""
    visibility = normalize_visibility(visibility)
    session = PlaySession(
        name=name,
        visibility=visibility,
        join_token=new_join_token() if visibility == VISIBILITY_LINK else None,
    )
    try:
        db.add(session)
        db.flush()
        owner = Participant(session_id=session.id, user_id=user_id, role=ROLE_OWNER)
        tab = ChatTab(
            session_id=session.id,
            name=settings.DEFAULT_CHAT_TAB_NAME,
            is_default=True,
            created_by=user_id,
        )
        db.add_all([owner, tab])
        db.commit()
        db.refresh(session)
        db.refresh(owner)
        db.refresh(tab)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to create session") from exc

    emit_change("sessions", ACTION_INSERT, SessionRecord.model_validate(session))
    emit_change("session_participants", ACTION_INSERT, ParticipantRecord.model_validate(owner))
    emit_change("chat_tabs", ACTION_INSERT, ChatTabRecord.model_validate(tab))
    log_session_created(user_id, session.id, session.name, session.visibility)
    return session


def list_sessions(db: Session, user_id: int) -> List[PlaySession]:
    """Sessions the user participates in plus every public one, newest first."""
    member_of = select(Participant.session_id).where(Participant.user_id == user_id)
    try:
        return (
            db.query(PlaySession)
            .filter(or_(PlaySession.id.in_(member_of), PlaySession.visibility == VISIBILITY_PUBLIC))
            .order_by(PlaySession.created_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to list sessions") from exc


def list_owned_sessions(db: Session, user_id: int) -> List[PlaySession]:
    owned = select(Participant.session_id).where(
        Participant.user_id == user_id, Participant.role == ROLE_OWNER
    )
    try:
        return (
            db.query(PlaySession)
            .filter(PlaySession.id.in_(owned))
            .order_by(PlaySession.created_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to list sessions") from exc


def session_detail(db: Session, session_id: str, user_id: int) -> SessionDetail:
    """What ``user_id`` may see of a session.

    Members see everything, the join token only if they own the session.
    Outsiders see public and link sessions without the token; private ones
    are forbidden.
    """
    session = get_session(db, session_id)
    member = membership.resolve(db, session_id, user_id)
    detail = SessionDetail.model_validate(session)
    if member.is_member:
        detail.participant_role = member.role
        if not member.is_owner:
            detail.join_token = None
        return detail
    if normalize_visibility(session.visibility) == VISIBILITY_PRIVATE:
        raise Forbidden()
    detail.join_token = None
    return detail


def _add_participant(db: Session, session_id: str, user_id: int) -> Optional[Participant]:
    participant = Participant(session_id=session_id, user_id=user_id, role=ROLE_PARTICIPANT)
    try:
        db.add(participant)
        db.commit()
        db.refresh(participant)
    except IntegrityError:
        # already a participant
        db.rollback()
        return None
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to add participant") from exc
    emit_change("session_participants", ACTION_INSERT, ParticipantRecord.model_validate(participant))
    log_join(user_id, session_id, participant.role)
    return participant


def join_session(db: Session, session_id: str, user_id: int, join_token: Optional[str]) -> Optional[Participant]:
    """Join as a participant. Returns None when the user already belongs."""
    session = get_session(db, session_id)
    if membership.resolve(db, session_id, user_id).is_member:
        return None
    visibility = normalize_visibility(session.visibility)
    if visibility == VISIBILITY_LINK:
        if not join_token or not session.join_token or not secrets.compare_digest(join_token, session.join_token):
            raise Forbidden("invalid join token")
    elif visibility != VISIBILITY_PUBLIC:
        raise Forbidden()
    return _add_participant(db, session_id, user_id)


def add_participant(db: Session, session_id: str, owner_id: int, user_id: int) -> Optional[Participant]:
    get_session(db, session_id)
    membership.require_owner(db, session_id, owner_id)
    try:
        user = db.query(User).filter(User.id == user_id).first()
    except SQLAlchemyError as exc:
        raise StorageError("failed to load user") from exc
    if user is None:
        raise NotFound("user not found")
    if membership.resolve(db, session_id, user_id).is_member:
        return None
    return _add_participant(db, session_id, user_id)


def list_participants(db: Session, session_id: str, user_id: int) -> List[ParticipantWithProfile]:
    membership.require_participant(db, session_id, user_id)
    try:
        rows = (
            db.query(Participant, User)
            .join(User, User.id == Participant.user_id)
            .filter(Participant.session_id == session_id)
            .order_by(Participant.created_at.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to list participants") from exc
    result = []
    for participant, user in rows:
        item = ParticipantWithProfile.model_validate(participant)
        item.profile_name = user.display_name or user.username
        item.profile_avatar_url = user.avatar_url
        result.append(item)
    return result
