from .session import SessionRecord, SessionDetail, ParticipantRecord, ParticipantWithProfile
from .chat import ChatTabRecord, SessionLogRecord
from .scene import (
    ActiveStep,
    PatternRecord,
    PlaceRecord,
    PlaceWithPatterns,
    SceneRecord,
    SceneStateRecord,
    SceneStateView,
    SceneStepRecord,
    SceneWithSteps,
)
from .board import BoardRecord, TokenRecord

__all__ = [
    "SessionRecord",
    "SessionDetail",
    "ParticipantRecord",
    "ParticipantWithProfile",
    "ChatTabRecord",
    "SessionLogRecord",
    "ActiveStep",
    "PatternRecord",
    "PlaceRecord",
    "PlaceWithPatterns",
    "SceneRecord",
    "SceneStateRecord",
    "SceneStateView",
    "SceneStepRecord",
    "SceneWithSteps",
    "BoardRecord",
    "TokenRecord",
]
