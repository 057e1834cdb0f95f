"""
Roomify Match Core — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import ActorRole, Property, User
from app.models.match import Match, MatchStatus, Swipe, SwipeDirection
from app.models.chat import ChatMessage, MessageType

__all__ = [
    "ActorRole",
    "User",
    "Property",
    "Match",
    "MatchStatus",
    "Swipe",
    "SwipeDirection",
    "ChatMessage",
    "MessageType",
]
