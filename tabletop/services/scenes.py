"""Scene progression.

A session has at most one scene state: the active scene and an index into its
ordered steps. Advancing past the last step wraps to the first. Every change of
the current step points the session board at that step's pattern background.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.core.errors import InvalidState, NotFound, StorageError
from tabletop.models.scene import Place, PlacePattern, Scene, SceneState, SceneStep
from tabletop.schemas.scene import ActiveStep, SceneStateRecord, SceneStateView
from tabletop.services.activity_log import log_scene
from tabletop.services.boards import sync_board_background
from tabletop.services.events import ACTION_INSERT, ACTION_UPDATE
from tabletop.services.fanout import emit_change
from tabletop.services.membership import require_owner, require_participant

logger = logging.getLogger(__name__)


def fetch_scene_steps(db: Session, scene_id: str) -> List[SceneStep]:
    try:
        return (
            db.query(SceneStep)
            .filter(SceneStep.scene_id == scene_id)
            .order_by(SceneStep.position.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise StorageError("failed to load scene steps") from exc


def fetch_pattern(db: Session, pattern_id: Optional[str]) -> Optional[PlacePattern]:
    if not pattern_id:
        return None
    try:
        return db.query(PlacePattern).filter(PlacePattern.id == pattern_id).first()
    except SQLAlchemyError as exc:
        raise StorageError("failed to load pattern") from exc


def fetch_scene_state(db: Session, session_id: str) -> Optional[SceneState]:
    try:
        return db.query(SceneState).filter(SceneState.session_id == session_id).first()
    except SQLAlchemyError as exc:
        raise StorageError("failed to load scene state") from exc


def _active_step(step: SceneStep, pattern: Optional[PlacePattern]) -> ActiveStep:
    step_view = ActiveStep.model_validate(step)
    step_view.background_url = pattern.background_url if pattern is not None else None
    return step_view


def clamp_index(index: int, length: int) -> int:
    return min(max(index, 0), length - 1)


def append_step(db: Session, scene: Scene, place_id: str, pattern_id: str) -> SceneStep:
    """Add a (place, pattern) step at the end of the scene.

    The place must belong to the scene's session and the pattern to the place.
    """
    try:
        place = db.query(Place).filter(Place.id == place_id).first()
        if place is None or place.session_id != scene.session_id:
            raise InvalidState("invalid place")
        pattern = db.query(PlacePattern).filter(PlacePattern.id == pattern_id).first()
        if pattern is None or pattern.place_id != place_id:
            raise InvalidState("invalid pattern")

        last_position = (
            db.query(func.max(SceneStep.position)).filter(SceneStep.scene_id == scene.id).scalar()
        )
        position = last_position + 1 if last_position is not None else 0
        step = SceneStep(scene_id=scene.id, place_id=place_id, pattern_id=pattern_id, position=position)
        db.add(step)
        db.commit()
        db.refresh(step)
        return step
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("failed to append scene step") from exc


class SceneStateMachine:
    """Scene state transitions for one session, on behalf of one user."""

    def __init__(self, db: Session, session_id: str, user_id: int):
        self.db = db
        self.session_id = session_id
        self.user_id = user_id

    def read(self) -> SceneStateView:
        require_participant(self.db, self.session_id, self.user_id)
        state = fetch_scene_state(self.db, self.session_id)
        if state is None:
            return SceneStateView(state=None, step=None)
        state_view = SceneStateRecord.model_validate(state)
        if not state.scene_id:
            return SceneStateView(state=state_view, step=None)

        steps = fetch_scene_steps(self.db, state.scene_id)
        if not steps:
            return SceneStateView(state=state_view, step=None)

        # steps may have been deleted since the index was written
        step = steps[clamp_index(state.step_index, len(steps))]
        pattern = fetch_pattern(self.db, step.pattern_id)
        return SceneStateView(state=state_view, step=_active_step(step, pattern))

    def activate(self, scene_id: str) -> SceneStateView:
        require_owner(self.db, self.session_id, self.user_id)
        try:
            scene = self.db.query(Scene).filter(Scene.id == scene_id).first()
        except SQLAlchemyError as exc:
            raise StorageError("failed to load scene") from exc
        if scene is None or scene.session_id != self.session_id:
            raise NotFound("scene not found")

        steps = fetch_scene_steps(self.db, scene.id)
        if not steps:
            raise InvalidState("scene has no steps")
        pattern = fetch_pattern(self.db, steps[0].pattern_id)

        state, action = self._save_active_scene(scene.id)
        state_view = SceneStateRecord.model_validate(state)
        emit_change("scene_states", action, state_view)
        sync_board_background(self.db, self.session_id, pattern.background_url if pattern else None)
        log_scene(self.user_id, self.session_id, "ACTIVATE", scene.id, 0)
        return SceneStateView(state=state_view, step=_active_step(steps[0], pattern))

    def _save_active_scene(self, scene_id: str):
        values = {"scene_id": scene_id, "step_index": 0, "updated_at": datetime.now()}
        try:
            state = fetch_scene_state(self.db, self.session_id)
            if state is not None:
                action = ACTION_UPDATE
                for key, value in values.items():
                    setattr(state, key, value)
            else:
                action = ACTION_INSERT
                state = SceneState(session_id=self.session_id, **values)
                self.db.add(state)
            try:
                self.db.commit()
            except IntegrityError:
                # another request created the row first
                self.db.rollback()
                action = ACTION_UPDATE
                self.db.query(SceneState).filter(SceneState.session_id == self.session_id).update(values)
                self.db.commit()
                state = fetch_scene_state(self.db, self.session_id)
            self.db.refresh(state)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("failed to save scene state") from exc
        return state, action

    def advance(self) -> SceneStateView:
        require_owner(self.db, self.session_id, self.user_id)
        state = fetch_scene_state(self.db, self.session_id)
        if state is None or not state.scene_id:
            raise NotFound("scene state not found")

        steps = fetch_scene_steps(self.db, state.scene_id)
        if not steps:
            raise InvalidState("scene has no steps")

        next_index = (state.step_index + 1) % len(steps)
        next_step = steps[next_index]
        pattern = fetch_pattern(self.db, next_step.pattern_id)

        try:
            self.db.query(SceneState).filter(SceneState.session_id == self.session_id).update(
                {"step_index": next_index, "updated_at": datetime.now()}
            )
            self.db.commit()
            self.db.refresh(state)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError("failed to advance scene state") from exc

        state_view = SceneStateRecord.model_validate(state)
        emit_change("scene_states", ACTION_UPDATE, state_view)
        sync_board_background(self.db, self.session_id, pattern.background_url if pattern else None)
        log_scene(self.user_id, self.session_id, "NEXT", state.scene_id, next_index)
        return SceneStateView(state=state_view, step=_active_step(next_step, pattern))
