"""Posting and reading session chat, including redacted "ghost" messages.

A message posted to a restricted audience is stored once for that audience. If
the author asks for redaction, a second row stands in for it for everybody
else: same speaker, a masked body of random length and no payload.
"""
import logging
import random
from dataclasses import dataclass
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.core.config import settings
from tabletop.core.errors import StorageError
from tabletop.models.chat import (
    MESSAGE_CHAT,
    MESSAGE_DICE,
    MESSAGE_REDACTED,
    SPEAKER_TYPES,
    ChatTab,
    SessionLog,
)
from tabletop.schemas.chat import SessionLogRecord
from tabletop.services.activity_log import log_say
from tabletop.services.events import ACTION_INSERT
from tabletop.services.fanout import emit_change
from tabletop.services.membership import participant_user_ids, require_participant
from tabletop.services.visibility import (
    TabRequest,
    normalize_allowed_users,
    resolve_chat_tab,
    tab_viewer_ids,
)

logger = logging.getLogger(__name__)

SPEAKER_CHARACTER = "character"
DEFAULT_SPEAKER = "account"


@dataclass
class ChatPost:
    message: str
    message_type: Optional[str] = None
    speaker_type: Optional[str] = None
    speaker_name: Optional[str] = None
    speaker_color: Optional[str] = None
    speaker_image_url: Optional[str] = None
    message_font: Optional[str] = None
    dice_result: Any = None
    visible_user_ids: Optional[List[Any]] = None
    redact_for_others: bool = False


def normalize_message_type(value: Optional[str]) -> str:
    return MESSAGE_DICE if value == MESSAGE_DICE else MESSAGE_CHAT


def normalize_speaker_type(value: Optional[str]) -> str:
    return value if value in SPEAKER_TYPES else DEFAULT_SPEAKER


def mask_text(length: Optional[int] = None) -> str:
    if length is None:
        length = random.randint(settings.REDACTION_MIN_LENGTH, settings.REDACTION_MAX_LENGTH)
    return settings.REDACTION_MASK_CHAR * length


def resolve_audience(db: Session, session_id: str, author_id: int, requested: Optional[List[Any]]) -> Optional[List[int]]:
    """Requested recipients that actually participate, plus the author.

    ``None`` means the message is not restricted, which is also what an
    empty or unusable list of recipients amounts to.
    """
    if requested is None:
        return None
    wanted = normalize_allowed_users(requested)
    if not wanted:
        return None
    members = set(participant_user_ids(db, session_id, wanted))
    audience = [user_id for user_id in wanted if user_id in members]
    if author_id not in audience:
        audience.insert(0, author_id)
    return audience


def _insert(db: Session, row: SessionLog) -> SessionLog:
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _ghost_for(real: SessionLog) -> SessionLog:
    return SessionLog(
        session_id=real.session_id,
        tab_id=real.tab_id,
        user_id=real.user_id,
        message=mask_text(),
        message_type=MESSAGE_REDACTED,
        speaker_type=real.speaker_type,
        speaker_name=real.speaker_name,
        speaker_color=real.speaker_color,
        speaker_image_url=None,
        message_font=real.message_font,
        dice_result=None,
        visible_user_ids=None,
        redacted_for_id=real.id,
    )


def post_message(db: Session, session_id: str, user_id: int, request: TabRequest, post: ChatPost) -> SessionLog:
    membership = require_participant(db, session_id, user_id)
    tab = resolve_chat_tab(db, session_id, request, membership.role, user_id)

    speaker_type = normalize_speaker_type(post.speaker_type)
    audience = resolve_audience(db, session_id, user_id, post.visible_user_ids)
    viewers = tab_viewer_ids(db, session_id, tab)
    real = SessionLog(
        session_id=session_id,
        tab_id=tab.id,
        user_id=user_id,
        message=post.message,
        message_type=normalize_message_type(post.message_type),
        speaker_type=speaker_type,
        speaker_name=post.speaker_name,
        speaker_color=post.speaker_color,
        speaker_image_url=post.speaker_image_url if speaker_type == SPEAKER_CHARACTER else None,
        message_font=post.message_font,
        dice_result=post.dice_result,
        visible_user_ids=audience,
    )
    try:
        real = _insert(db, real)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to save message") from exc
    emit_change(
        "session_logs",
        ACTION_INSERT,
        SessionLogRecord.model_validate(real),
        audience_user_ids=viewers,
    )
    log_say(user_id, session_id, tab.name, real.message_type, audience is not None)

    if audience and post.redact_for_others:
        _post_ghost(db, real, audience, viewers)
    return real


def _post_ghost(db: Session, real: SessionLog, audience: List[int], viewers: Optional[set]) -> None:
    try:
        ghost = _insert(db, _ghost_for(real))
    except SQLAlchemyError as exc:
        # the real message stands on its own
        db.rollback()
        logger.warning("Failed to store redacted copy of message %s: %s", real.id, exc)
        return
    emit_change(
        "session_logs",
        ACTION_INSERT,
        SessionLogRecord.model_validate(ghost),
        exclude_user_ids=audience,
        audience_user_ids=viewers,
    )


def is_visible_to(row: SessionLog, user_id: int) -> bool:
    visible = row.visible_user_ids
    return visible is None or user_id in visible


def filter_visible_logs(rows: List[SessionLog], user_id: int) -> List[SessionLog]:
    """Drop rows the reader may not see and ghosts of messages they can see."""
    visible = [row for row in rows if is_visible_to(row, user_id)]
    seen_ids = {row.id for row in visible}
    return [row for row in visible if not (row.redacted_for_id and row.redacted_for_id in seen_ids)]


def _ghost_targets_visible(db: Session, rows: List[SessionLog], user_id: int) -> set:
    # originals outside the page can still hide a ghost on it
    target_ids = {row.redacted_for_id for row in rows if row.redacted_for_id}
    if not target_ids:
        return set()
    originals = db.query(SessionLog).filter(SessionLog.id.in_(target_ids)).all()
    return {row.id for row in originals if is_visible_to(row, user_id)}


def list_logs(db: Session, session_id: str, user_id: int, request: TabRequest, limit: int = 200) -> List[SessionLog]:
    membership = require_participant(db, session_id, user_id)
    tab: ChatTab = resolve_chat_tab(db, session_id, request, membership.role, user_id)
    try:
        rows = (
            db.query(SessionLog)
            .filter(SessionLog.session_id == session_id, SessionLog.tab_id == tab.id)
            .order_by(SessionLog.created_at.desc())
            .limit(limit)
            .all()
        )
        # newest page, returned oldest first
        rows.reverse()
        hidden_targets = _ghost_targets_visible(db, rows, user_id)
    except SQLAlchemyError as exc:
        raise StorageError("failed to load chat log") from exc
    return [
        row
        for row in filter_visible_logs(rows, user_id)
        if not (row.redacted_for_id and row.redacted_for_id in hidden_targets)
    ]
