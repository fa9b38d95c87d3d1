"""Data models for Creamie chat sync."""
from .conversation import Conversation, Message, Participant, SyncStatus
from .auth import AuthResponse, User
from .dog import Dog, DogsPage, Location

__all__ = [
    "Conversation",
    "Message",
    "Participant",
    "SyncStatus",
    "AuthResponse",
    "User",
    "Dog",
    "DogsPage",
    "Location",
]
