from datetime import datetime
from pydantic import BaseModel
from typing import Any, List, Optional


class ChatTabRecord(BaseModel):
    id: str
    session_id: str
    name: str
    allowed_roles: Optional[List[str]] = None
    allowed_users: Optional[List[int]] = None
    toast_enabled: bool = True
    is_default: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class SessionLogRecord(BaseModel):
    id: str
    session_id: str
    tab_id: Optional[str] = None
    user_id: int
    message: str
    message_type: str
    speaker_type: str
    speaker_name: Optional[str] = None
    speaker_color: Optional[str] = None
    speaker_image_url: Optional[str] = None
    message_font: Optional[str] = None
    dice_result: Optional[Any] = None
    visible_user_ids: Optional[List[int]] = None
    redacted_for_id: Optional[str] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }
