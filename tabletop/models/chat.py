from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, JSON
from datetime import datetime
from tabletop.core.database import Base
from tabletop.models._ids import new_id

MESSAGE_CHAT = "chat"
MESSAGE_DICE = "dice"
MESSAGE_REDACTED = "redacted"

SPEAKER_TYPES = ("account", "character", "custom", "kp")


class ChatTab(Base):
    """A chat channel inside a session.

    Empty/null ``allowed_roles`` and ``allowed_users`` mean unrestricted.
    """
    __tablename__ = "chat_tabs"
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String, nullable=False)
    allowed_roles = Column(JSON, nullable=True)
    allowed_users = Column(JSON, nullable=True)
    toast_enabled = Column(Boolean, default=True)
    is_default = Column(Boolean, default=False, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class SessionLog(Base):
    __tablename__ = "session_logs"
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    tab_id = Column(String(36), ForeignKey("chat_tabs.id", ondelete="CASCADE"), index=True, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    message = Column(String, nullable=False)
    message_type = Column(String, default=MESSAGE_CHAT, nullable=False)
    speaker_type = Column(String, default="account", nullable=False)
    speaker_name = Column(String, nullable=True)
    speaker_color = Column(String, nullable=True)
    speaker_image_url = Column(String, nullable=True)
    message_font = Column(String, nullable=True)
    dice_result = Column(JSON, nullable=True)
    # null: visible to every participant who can view the tab
    visible_user_ids = Column(JSON, nullable=True)
    redacted_for_id = Column(String(36), ForeignKey("session_logs.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime, default=datetime.now, index=True)
