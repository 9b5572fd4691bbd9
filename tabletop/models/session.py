from sqlalchemy import Column, String, DateTime
from datetime import datetime
from tabletop.core.database import Base
from tabletop.models._ids import new_id

VISIBILITY_PRIVATE = "private"
VISIBILITY_LINK = "link"
VISIBILITY_PUBLIC = "public"
VISIBILITIES = (VISIBILITY_PRIVATE, VISIBILITY_LINK, VISIBILITY_PUBLIC)


class PlaySession(Base):
    """A shared play space. ``join_token`` is set iff visibility is ``link``."""
    __tablename__ = "sessions"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    visibility = Column(String, default=VISIBILITY_PRIVATE, nullable=False)
    join_token = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
