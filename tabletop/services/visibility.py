"""Tab visibility rules and chat-tab targeting."""
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.core.errors import Forbidden, NotFound, StorageError
from tabletop.models.chat import ChatTab
from tabletop.models.participant import Participant
from tabletop.models.session import VISIBILITIES, VISIBILITY_PRIVATE


@dataclass(frozen=True)
class ExplicitTab:
    tab_id: str


@dataclass(frozen=True)
class DefaultTab:
    pass


TabRequest = Union[ExplicitTab, DefaultTab]


def tab_request(tab_id: Optional[str]) -> TabRequest:
    if tab_id:
        return ExplicitTab(tab_id)
    return DefaultTab()


def normalize_visibility(value: Any) -> str:
    return value if value in VISIBILITIES else VISIBILITY_PRIVATE


def normalize_allowed_roles(roles: Any) -> list[str]:
    if not isinstance(roles, list):
        return []
    normalized = [value.strip() if isinstance(value, str) else "" for value in roles]
    return [value for value in normalized if value]


def normalize_allowed_users(users: Any) -> list[int]:
    """Keep the entries that look like user ids, in order, without duplicates."""
    if not isinstance(users, list):
        return []
    result: list[int] = []
    for value in users:
        if isinstance(value, bool):
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value.isdigit():
                continue
        try:
            user_id = int(value)
        except (TypeError, ValueError):
            continue
        if user_id not in result:
            result.append(user_id)
    return result


def can_view_tab(tab: ChatTab, role: Optional[str], user_id: Optional[int]) -> bool:
    roles: Iterable[str] = tab.allowed_roles or []
    users: Iterable[int] = tab.allowed_users or []
    if not roles and not users:
        return True
    if user_id is not None and user_id in users:
        return True
    if role and role in roles:
        return True
    return False


def tab_viewer_ids(db: Session, session_id: str, tab: ChatTab) -> Optional[set]:
    """Participants allowed to read ``tab``, or None when the tab is open to all."""
    if not tab.allowed_roles and not tab.allowed_users:
        return None
    try:
        rows = (
            db.query(Participant.user_id, Participant.role)
            .filter(Participant.session_id == session_id)
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to load participants") from exc
    return {user_id for user_id, role in rows if can_view_tab(tab, role, user_id)}


def fetch_default_tab(db: Session, session_id: str) -> Optional[ChatTab]:
    try:
        return (
            db.query(ChatTab)
            .filter(ChatTab.session_id == session_id)
            .order_by(ChatTab.is_default.desc(), ChatTab.created_at.asc())
            .first()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to load default chat tab") from exc


def fetch_tab(db: Session, tab_id: str) -> Optional[ChatTab]:
    try:
        return db.query(ChatTab).filter(ChatTab.id == tab_id).first()
    except SQLAlchemyError as exc:
        raise StorageError("failed to load chat tab") from exc


def resolve_chat_tab(
    db: Session,
    session_id: str,
    request: TabRequest,
    role: Optional[str],
    user_id: int,
) -> ChatTab:
    if isinstance(request, ExplicitTab):
        tab = fetch_tab(db, request.tab_id)
        if tab is None or tab.session_id != session_id:
            raise NotFound("chat tab not found")
    else:
        tab = fetch_default_tab(db, session_id)
        if tab is None:
            raise NotFound("chat tab not found")
    if not can_view_tab(tab, role, user_id):
        raise Forbidden()
    return tab
