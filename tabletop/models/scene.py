from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from datetime import datetime
from tabletop.core.database import Base
from tabletop.models._ids import new_id


class Place(Base):
    __tablename__ = "places"
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class PlacePattern(Base):
    __tablename__ = "place_patterns"
    id = Column(String(36), primary_key=True, default=new_id)
    place_id = Column(String(36), ForeignKey("places.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String, nullable=False)
    background_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)


class Scene(Base):
    __tablename__ = "scenes"
    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class SceneStep(Base):
    __tablename__ = "scene_steps"
    id = Column(String(36), primary_key=True, default=new_id)
    scene_id = Column(String(36), ForeignKey("scenes.id", ondelete="CASCADE"), index=True, nullable=False)
    place_id = Column(String(36), ForeignKey("places.id"), nullable=False)
    pattern_id = Column(String(36), ForeignKey("place_patterns.id"), nullable=False)
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class SceneState(Base):
    """The active scene of a session and the index of its current step."""
    __tablename__ = "scene_states"
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True)
    scene_id = Column(String(36), ForeignKey("scenes.id", ondelete="SET NULL"), nullable=True)
    step_index = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
