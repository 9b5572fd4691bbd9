"""Change-event envelope and realtime frame shapes."""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel

ACTION_INSERT = "insert"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTIONS = (ACTION_INSERT, ACTION_UPDATE, ACTION_DELETE)

SESSIONS_TABLE = "sessions"


def session_id_for(table: Optional[str], record: Any) -> str:
    """Session a record belongs to; "" when it is not session-scoped."""
    if not isinstance(record, Mapping):
        return ""
    if table == SESSIONS_TABLE:
        value = record.get("id")
    else:
        value = record.get("session_id")
    return str(value) if value else ""


def record_to_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    if isinstance(record, Mapping):
        return dict(record)
    return {}


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: str
    session_id: str
    record: Dict[str, Any]
    # None: everyone subscribed to the session
    audience: Optional[FrozenSet[Any]] = None
    excluded: FrozenSet[Any] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls, table: str, action: str, record: Any, exclude_user_ids=None, audience_user_ids=None
    ) -> "ChangeEvent":
        """``audience_user_ids`` narrows delivery further than the record's
        own ``visible_user_ids``; both apply when both are set."""
        if action not in ACTIONS:
            raise ValueError(f"unknown change action: {action}")
        data = record_to_dict(record)
        visible = data.get("visible_user_ids")
        audience = frozenset(visible) if isinstance(visible, list) else None
        if audience_user_ids is not None:
            allowed = frozenset(audience_user_ids)
            audience = allowed if audience is None else audience & allowed
        return cls(
            table=table,
            action=action,
            session_id=session_id_for(table, data),
            record=data,
            audience=audience,
            excluded=frozenset(exclude_user_ids or ()),
        )

    def frame(self) -> Dict[str, Any]:
        return change_frame(self.table, self.action, self.record)


def change_frame(table: str, action: str, record: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "change", "table": table, "action": action, "record": record}


def welcome_frame() -> Dict[str, Any]:
    return {"type": "welcome"}


def subscribed_frame(session_id: str) -> Dict[str, Any]:
    return {"type": "subscribed", "session_id": session_id}


def error_frame(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}


def parse_frame(raw: Any) -> Optional[Dict[str, Any]]:
    """Decode one client frame; anything that is not a JSON object yields None."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict):
        return None
    return message
