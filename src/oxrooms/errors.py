"""Exceptions raised by rooms and the registry.

Every ``RoomError`` is a precondition or capacity failure: the session layer
answers it with an ``error`` notification to the caller only, and the room
state is left exactly as it was.
"""

from __future__ import annotations


class OXRoomsError(Exception):
    """Base class for all OXRooms errors."""


class RoomError(OXRoomsError):
    """A refused intent. ``code`` is sent to the client verbatim."""

    code = "rejected"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------- Registry ----------


class RoomNotFound(RoomError):
    code = "roomNotFound"

    def __init__(self, room_code: str) -> None:
        self.room_code = room_code
        super().__init__(f"Room {room_code} not found")


class RegistryFull(RoomError):
    code = "serverFull"


class AlreadyInRoom(RoomError):
    code = "alreadyInRoom"


class NotInRoom(RoomError):
    code = "notInRoom"


# ---------- Room membership ----------


class RoomFull(RoomError):
    code = "roomFull"


class NotHost(RoomError):
    code = "notHost"


class MemberNotFound(RoomError):
    code = "memberNotFound"


class CannotKickHost(RoomError):
    code = "cannotKickHost"


class InvalidSettings(RoomError):
    code = "invalidSettings"


# ---------- Slots and phases ----------


class WrongPhase(RoomError):
    code = "wrongPhase"


class SlotOccupied(RoomError):
    code = "slotOccupied"


class SlotExcluded(RoomError):
    """Raised while a kicked member's slot cooldown is still running."""

    code = "slotExcluded"

    def __init__(self, remaining: float) -> None:
        self.remaining = remaining
        super().__init__(f"You can take a slot again in {remaining:.0f}s")


class NotSeated(RoomError):
    code = "notSeated"


class AlreadySeated(RoomError):
    code = "alreadySeated"


# ---------- Match ----------


class NotYourTurn(RoomError):
    code = "notYourTurn"


class IllegalMove(RoomError):
    code = "illegalMove"


class GameNotOver(RoomError):
    code = "gameNotOver"


# ---------- Chat ----------


class ChatRateLimited(RoomError):
    code = "chatRateLimited"
