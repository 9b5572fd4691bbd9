from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tabletop.api.endpoints.auth import get_current_user
from tabletop.core.database import get_db
from tabletop.models.user import User
from tabletop.schemas.chat import SessionLogRecord
from tabletop.services import chat
from tabletop.services.sessions import get_session
from tabletop.services.visibility import tab_request

router = APIRouter(tags=["chat"])


class ChatMessageCreate(BaseModel):
    message: str
    tab_id: Optional[str] = None
    message_type: Optional[str] = None
    speaker_type: Optional[str] = None
    speaker_name: Optional[str] = None
    speaker_color: Optional[str] = None
    speaker_image_url: Optional[str] = None
    message_font: Optional[str] = None
    dice_result: Optional[Any] = None
    visible_user_ids: Optional[List[Any]] = None
    redact_for_others: bool = False


@router.get("/sessions/{session_id}/logs", response_model=List[SessionLogRecord])
async def get_logs(
    session_id: str,
    tab_id: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    return chat.list_logs(db, session_id, current_user.id, tab_request(tab_id), limit=limit)


@router.post("/sessions/{session_id}/chat", response_model=SessionLogRecord, status_code=status.HTTP_201_CREATED)
async def post_chat_message(
    session_id: str,
    body: ChatMessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    get_session(db, session_id)
    post = chat.ChatPost(
        message=body.message,
        message_type=body.message_type,
        speaker_type=body.speaker_type,
        speaker_name=body.speaker_name,
        speaker_color=body.speaker_color,
        speaker_image_url=body.speaker_image_url,
        message_font=body.message_font,
        dice_result=body.dice_result,
        visible_user_ids=body.visible_user_ids,
        redact_for_others=body.redact_for_others,
    )
    return chat.post_message(db, session_id, current_user.id, tab_request(body.tab_id), post)
