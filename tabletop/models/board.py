from sqlalchemy import Column, Integer, Float, String, DateTime, Boolean, ForeignKey
from datetime import datetime
from tabletop.core.database import Base
from tabletop.models._ids import new_id

DEFAULT_TOKEN_SIZE = 64
DEFAULT_TOKEN_PRIORITY = 0


class Board(Base):
    __tablename__ = "boards"
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), unique=True, nullable=False)
    background_url = Column(String, nullable=True)
    grid_enabled = Column(Boolean, default=False)
    grid_background_color = Column(String, nullable=True)
    grid_background_image_url = Column(String, nullable=True)
    grid_background_blur = Column(Boolean, default=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class Token(Base):
    """A piece on the board."""
    __tablename__ = "tokens"
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String, nullable=False)
    x = Column(Float, nullable=False)
    y = Column(Float, nullable=False)
    width = Column(Integer, default=DEFAULT_TOKEN_SIZE)
    height = Column(Integer, default=DEFAULT_TOKEN_SIZE)
    rotation = Column(Float, default=0)
    image_url = Column(String, nullable=True)
    show_name = Column(Boolean, default=True)
    priority = Column(Integer, default=DEFAULT_TOKEN_PRIORITY)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
