from tabletop.models.user import User
from tabletop.models.session import PlaySession
from tabletop.models.participant import Participant
from tabletop.models.chat import ChatTab, SessionLog
from tabletop.models.scene import Place, PlacePattern, Scene, SceneStep, SceneState
from tabletop.models.board import Board, Token

__all__ = [
    "User",
    "PlaySession",
    "Participant",
    "ChatTab",
    "SessionLog",
    "Place",
    "PlacePattern",
    "Scene",
    "SceneStep",
    "SceneState",
    "Board",
    "Token",
]
