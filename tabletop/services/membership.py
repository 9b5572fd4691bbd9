"""Session membership lookups and role gates."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from tabletop.core.database import SessionLocal
from tabletop.core.errors import Forbidden, StorageError
from tabletop.models.participant import Participant, ROLE_OWNER


@dataclass(frozen=True)
class Membership:
    is_member: bool
    role: Optional[str] = None

    @property
    def is_owner(self) -> bool:
        return self.is_member and self.role == ROLE_OWNER


NOT_A_MEMBER = Membership(is_member=False)


def resolve(db: Session, session_id: str, user_id: int) -> Membership:
    """Look up the participant row for (session, user).

    A missing row is a normal outcome and yields ``NOT_A_MEMBER``; only a
    failing query raises.
    """
    try:
        participant = (
            db.query(Participant)
            .filter(Participant.session_id == session_id, Participant.user_id == user_id)
            .first()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to load participant") from exc
    if participant is None:
        return NOT_A_MEMBER
    return Membership(is_member=True, role=participant.role)


def require_participant(db: Session, session_id: str, user_id: int) -> Membership:
    membership = resolve(db, session_id, user_id)
    if not membership.is_member:
        raise Forbidden()
    return membership


def require_owner(db: Session, session_id: str, user_id: int) -> Membership:
    membership = require_participant(db, session_id, user_id)
    if not membership.is_owner:
        raise Forbidden()
    return membership


def participant_user_ids(db: Session, session_id: str, user_ids) -> list[int]:
    """Return the subset of ``user_ids`` that participate in the session."""
    wanted = list(user_ids)
    if not wanted:
        return []
    try:
        rows = (
            db.query(Participant.user_id)
            .filter(Participant.session_id == session_id, Participant.user_id.in_(wanted))
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to load participants") from exc
    return [row[0] for row in rows]


def _check_participant(session_id: str, user_id: int) -> bool:
    db = SessionLocal()
    try:
        return resolve(db, session_id, user_id).is_member
    finally:
        db.close()


async def is_participant(token: str, session_id: str, user_id: int) -> bool:
    """Participant check used by the realtime gateway at subscribe time.

    The token has already been verified by the caller; it is accepted so the
    check can be delegated to a store that scopes reads per credential.
    """
    return await run_in_threadpool(_check_participant, session_id, user_id)
