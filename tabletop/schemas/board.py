from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class BoardRecord(BaseModel):
    id: str
    session_id: str
    background_url: Optional[str] = None
    grid_enabled: bool = False
    grid_background_color: Optional[str] = None
    grid_background_image_url: Optional[str] = None
    grid_background_blur: bool = False
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }


class TokenRecord(BaseModel):
    id: str
    session_id: str
    name: str
    x: float
    y: float
    width: int
    height: int
    rotation: float = 0
    image_url: Optional[str] = None
    show_name: bool = True
    priority: int = 0
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }
