from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class SessionRecord(BaseModel):
    id: str
    name: str
    visibility: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class SessionDetail(SessionRecord):
    join_token: Optional[str] = None
    participant_role: Optional[str] = None


class ParticipantRecord(BaseModel):
    id: str
    session_id: str
    user_id: int
    role: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class ParticipantWithProfile(ParticipantRecord):
    profile_name: Optional[str] = None
    profile_avatar_url: Optional[str] = None
