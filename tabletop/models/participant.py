from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
from tabletop.core.database import Base
from tabletop.models._ids import new_id

ROLE_OWNER = "owner"
ROLE_PARTICIPANT = "participant"


class Participant(Base):
    __tablename__ = "session_participants"
    __table_args__ = (UniqueConstraint("session_id", "user_id", name="uq_participant_session_user"),)
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    role = Column(String, default=ROLE_PARTICIPANT, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
