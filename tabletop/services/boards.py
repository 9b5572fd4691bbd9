"""Board upserts shared by the board routes and the scene state machine."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.core.errors import StorageError
from tabletop.models.board import Board
from tabletop.schemas.board import BoardRecord
from tabletop.services.events import ACTION_INSERT, ACTION_UPDATE
from tabletop.services.fanout import emit_change


def get_board(db: Session, session_id: str) -> Optional[Board]:
    try:
        return db.query(Board).filter(Board.session_id == session_id).first()
    except SQLAlchemyError as exc:
        raise StorageError("failed to load board") from exc


def upsert_board(db: Session, session_id: str, changes: Dict[str, Any]) -> Board:
    """Apply ``changes`` to the session's board, creating it if needed.

    Emits ``boards`` ``update`` or ``insert`` accordingly.
    """
    return _write_board(db, session_id, get_board(db, session_id), changes)


def _write_board(db: Session, session_id: str, existing: Optional[Board], changes: Dict[str, Any]) -> Board:
    try:
        if existing is not None:
            for key, value in changes.items():
                setattr(existing, key, value)
            existing.updated_at = datetime.now()
            db.commit()
            db.refresh(existing)
            board, action = existing, ACTION_UPDATE
        else:
            board = Board(session_id=session_id, updated_at=datetime.now(), **changes)
            db.add(board)
            db.commit()
            db.refresh(board)
            action = ACTION_INSERT
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to save board") from exc

    emit_change("boards", action, BoardRecord.model_validate(board))
    return board


def sync_board_background(db: Session, session_id: str, background_url: Optional[str]) -> Board:
    """Point the session's board at ``background_url``.

    Repeating a call with the background the board already shows writes
    nothing and emits nothing.
    """
    existing = get_board(db, session_id)
    if existing is not None and existing.background_url == background_url:
        return existing
    return _write_board(db, session_id, existing, {"background_url": background_url})
