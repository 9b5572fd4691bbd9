import logging
import sys
from typing import Any, Dict, Optional

_logger = logging.getLogger("tabletop.activity")
if not _logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)


class NameStore:
    def __init__(self) -> None:
        self._names: Dict[Any, str] = {}

    def set_name(self, user_id: Any, name: str) -> None:
        self._names[user_id] = name

    def get_name(self, user_id: Any) -> str:
        name = self._names.get(user_id)
        return name if name else f"user{user_id}"


name_store = NameStore()


def _prefix(session_id: str, user_id: Any) -> str:
    return f"[{session_id}] <{name_store.get_name(user_id)}>"


def log_login(user_id: Any, username: str) -> None:
    name_store.set_name(user_id, username)
    _logger.info(f"<{username}> LOGIN")


def log_session_created(user_id: Any, session_id: str, name: str, visibility: str) -> None:
    _logger.info(f"{_prefix(session_id, user_id)} CREATE {name} ({visibility})")


def log_join(user_id: Any, session_id: str, role: str) -> None:
    _logger.info(f"{_prefix(session_id, user_id)} JOIN as {role}")


def log_say(user_id: Any, session_id: str, tab_name: Optional[str], message_type: str, restricted: bool) -> None:
    # message bodies stay out of the log, restricted ones in particular
    scope = "restricted" if restricted else "public"
    _logger.info(f"{_prefix(session_id, user_id)} SAY {tab_name or '-'} {message_type} {scope}")


def log_scene(user_id: Any, session_id: str, verb: str, scene_id: str, step_index: int) -> None:
    _logger.info(f"{_prefix(session_id, user_id)} SCENE {verb} {scene_id} step={step_index}")
