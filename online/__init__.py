from .messages import Message, MalformedMessage, Room, RoomCard, RoomMember, RoomSettings
from .connection import ConnectionConfig, ConnectionManager
from .rooms import RoomDirectory, RoomSession, room_from_payload

__all__ = [
    "Message",
    "MalformedMessage",
    "Room",
    "RoomCard",
    "RoomMember",
    "RoomSettings",
    "ConnectionConfig",
    "ConnectionManager",
    "RoomDirectory",
    "RoomSession",
    "room_from_payload",
]
