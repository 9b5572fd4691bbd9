from collections import defaultdict
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabletop.api.endpoints.auth import get_current_user
from tabletop.core.database import get_db
from tabletop.core.errors import InvalidState, NotFound, StorageError
from tabletop.models.scene import Place, PlacePattern, Scene, SceneStep
from tabletop.models.user import User
from tabletop.schemas.scene import (
    PatternRecord,
    PlaceRecord,
    PlaceWithPatterns,
    SceneRecord,
    SceneStateView,
    SceneStepRecord,
    SceneWithSteps,
)
from tabletop.services.events import ACTION_INSERT
from tabletop.services.fanout import emit_change
from tabletop.services.membership import require_owner, require_participant
from tabletop.services.scenes import SceneStateMachine, append_step
from tabletop.services.sessions import get_session

router = APIRouter(tags=["scenes"])


class NamedCreate(BaseModel):
    name: str


class PatternCreate(BaseModel):
    name: str
    background_url: Optional[str] = None


class StepCreate(BaseModel):
    place_id: str
    pattern_id: str


class SceneActivate(BaseModel):
    scene_id: str


def _required_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise InvalidState("name is required")
    return name


def _save(db: Session, row, what: str):
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"failed to create {what}") from exc
    return row


@router.get("/sessions/{session_id}/places", response_model=List[PlaceWithPatterns])
async def get_places(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    require_participant(db, session_id, current_user.id)
    places = db.query(Place).filter(Place.session_id == session_id).order_by(Place.created_at.asc()).all()
    patterns_by_place = defaultdict(list)
    if places:
        patterns = (
            db.query(PlacePattern)
            .filter(PlacePattern.place_id.in_([place.id for place in places]))
            .order_by(PlacePattern.created_at.asc())
            .all()
        )
        for pattern in patterns:
            patterns_by_place[pattern.place_id].append(PatternRecord.model_validate(pattern))
    result = []
    for place in places:
        item = PlaceWithPatterns.model_validate(place)
        item.place_patterns = patterns_by_place[place.id]
        result.append(item)
    return result


@router.post("/sessions/{session_id}/places", response_model=PlaceRecord, status_code=status.HTTP_201_CREATED)
async def create_place(
    session_id: str,
    body: NamedCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    require_owner(db, session_id, current_user.id)
    place = _save(db, Place(session_id=session_id, name=_required_name(body.name), created_by=current_user.id), "place")
    record = PlaceRecord.model_validate(place)
    emit_change("places", ACTION_INSERT, record)
    return record


@router.post("/places/{place_id}/patterns", response_model=PatternRecord, status_code=status.HTTP_201_CREATED)
async def create_pattern(
    place_id: str,
    body: PatternCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    place = db.query(Place).filter(Place.id == place_id).first()
    if place is None:
        raise NotFound("place not found")
    require_owner(db, place.session_id, current_user.id)
    pattern = _save(
        db,
        PlacePattern(place_id=place.id, name=_required_name(body.name), background_url=body.background_url),
        "pattern",
    )
    record = PatternRecord.model_validate(pattern)
    # patterns carry no session id of their own
    emit_change("place_patterns", ACTION_INSERT, {**record.model_dump(mode="json"), "session_id": place.session_id})
    return record


@router.get("/sessions/{session_id}/scenes", response_model=List[SceneWithSteps])
async def get_scenes(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    require_participant(db, session_id, current_user.id)
    scenes = db.query(Scene).filter(Scene.session_id == session_id).order_by(Scene.created_at.asc()).all()
    steps_by_scene = defaultdict(list)
    if scenes:
        steps = (
            db.query(SceneStep)
            .filter(SceneStep.scene_id.in_([scene.id for scene in scenes]))
            .order_by(SceneStep.position.asc())
            .all()
        )
        for step in steps:
            steps_by_scene[step.scene_id].append(SceneStepRecord.model_validate(step))
    result = []
    for scene in scenes:
        item = SceneWithSteps.model_validate(scene)
        item.scene_steps = steps_by_scene[scene.id]
        result.append(item)
    return result


@router.post("/sessions/{session_id}/scenes", response_model=SceneRecord, status_code=status.HTTP_201_CREATED)
async def create_scene(
    session_id: str,
    body: NamedCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    require_owner(db, session_id, current_user.id)
    scene = _save(db, Scene(session_id=session_id, name=_required_name(body.name), created_by=current_user.id), "scene")
    record = SceneRecord.model_validate(scene)
    emit_change("scenes", ACTION_INSERT, record)
    return record


@router.post("/scenes/{scene_id}/steps", response_model=SceneStepRecord, status_code=status.HTTP_201_CREATED)
async def create_scene_step(
    scene_id: str,
    body: StepCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    scene = db.query(Scene).filter(Scene.id == scene_id).first()
    if scene is None:
        raise NotFound("scene not found")
    require_owner(db, scene.session_id, current_user.id)
    step = append_step(db, scene, body.place_id, body.pattern_id)
    record = SceneStepRecord.model_validate(step)
    emit_change("scene_steps", ACTION_INSERT, {**record.model_dump(mode="json"), "session_id": scene.session_id})
    return record


@router.get("/sessions/{session_id}/scene-state", response_model=SceneStateView)
async def read_scene_state(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    return SceneStateMachine(db, session_id, current_user.id).read()


@router.post("/sessions/{session_id}/scene-state", response_model=SceneStateView)
async def activate_scene(
    session_id: str,
    body: SceneActivate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    return SceneStateMachine(db, session_id, current_user.id).activate(body.scene_id)


@router.post("/sessions/{session_id}/scene-next", response_model=SceneStateView)
async def advance_scene(session_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    get_session(db, session_id)
    return SceneStateMachine(db, session_id, current_user.id).advance()
