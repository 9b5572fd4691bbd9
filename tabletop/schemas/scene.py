from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional


class PatternRecord(BaseModel):
    id: str
    place_id: str
    name: str
    background_url: Optional[str] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class PlaceRecord(BaseModel):
    id: str
    session_id: str
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class PlaceWithPatterns(PlaceRecord):
    place_patterns: List[PatternRecord] = []


class SceneStepRecord(BaseModel):
    id: str
    scene_id: str
    place_id: str
    pattern_id: str
    position: int
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class SceneRecord(BaseModel):
    id: str
    session_id: str
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class SceneWithSteps(SceneRecord):
    scene_steps: List[SceneStepRecord] = []


class SceneStateRecord(BaseModel):
    session_id: str
    scene_id: Optional[str] = None
    step_index: int
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class ActiveStep(SceneStepRecord):
    background_url: Optional[str] = None


class SceneStateView(BaseModel):
    state: Optional[SceneStateRecord] = None
    step: Optional[ActiveStep] = None
