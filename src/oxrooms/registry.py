"""Process-wide collection of rooms keyed by room code."""

from __future__ import annotations

import math
import random
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from . import config, errors
from .game import GameKind
from .logging_config import get_logger
from .room import Notice, Room, RoomSettings

logger = get_logger(__name__)

ROOM_CODE_LENGTH = 6


def generate_room_code() -> str:
    return uuid.uuid4().hex[:ROOM_CODE_LENGTH].upper()


def normalize_code(room_code: str) -> str:
    return room_code.strip().upper()


class RoomRegistry:
    """Creates, finds and deletes rooms, and tracks which room each member is in.

    The registry is not thread-safe: callers run one transition at a time (the
    server serializes them on the event loop behind a single lock).
    """

    def __init__(
        self,
        max_rooms: int = config.MAX_ROOMS,
        page_size: int = config.ROOM_LIST_PAGE_SIZE,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        code_factory: Callable[[], str] = generate_room_code,
    ) -> None:
        self.max_rooms = max_rooms
        self.page_size = page_size
        self.clock = clock
        self.rng = rng or random.Random()
        self.code_factory = code_factory
        self.rooms: Dict[str, Room] = {}
        self._member_rooms: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.rooms)

    def get(self, room_code: str) -> Room:
        room = self.rooms.get(normalize_code(room_code))
        if room is None:
            raise errors.RoomNotFound(normalize_code(room_code))
        return room

    def room_of(self, member_id: str) -> Optional[Room]:
        code = self._member_rooms.get(member_id)
        return self.rooms.get(code) if code else None

    def create_room(
        self,
        member_id: str,
        display_name: str,
        game_kind: GameKind = GameKind.TICTACTOE,
        settings: Optional[Dict[str, object]] = None,
    ) -> Tuple[Room, List[Notice]]:
        if member_id in self._member_rooms:
            raise errors.AlreadyInRoom("Leave your current room first")
        if len(self.rooms) >= self.max_rooms:
            raise errors.RegistryFull("No more rooms can be created right now")
        try:
            room_settings = RoomSettings.parse_for(game_kind, settings or {})
        except ValidationError as exc:
            raise errors.InvalidSettings(str(exc)) from exc

        for _ in range(10):
            code = self.code_factory()
            if code not in self.rooms:
                break
            logger.warning("Room code collision detected, regenerating: %s", code)
        else:
            raise errors.RegistryFull("Unable to allocate room")

        room = Room(
            code=code,
            game_kind=game_kind,
            settings=room_settings,
            clock=self.clock,
            rng=self.rng,
        )
        notices = room.join(member_id, display_name, notice_type="roomCreated")
        self.rooms[code] = room
        self._member_rooms[member_id] = code
        logger.info("Created %s room %s for %s", game_kind.value, code, display_name)
        return room, notices

    def join_room(
        self, member_id: str, room_code: str, display_name: str
    ) -> Tuple[Room, List[Notice]]:
        if member_id in self._member_rooms:
            raise errors.AlreadyInRoom("Leave your current room first")
        room = self.get(room_code)
        notices = room.join(member_id, display_name)
        self._member_rooms[member_id] = room.code
        return room, notices

    def leave(self, member_id: str) -> Tuple[Optional[Room], List[Notice]]:
        code = self._member_rooms.pop(member_id, None)
        room = self.rooms.get(code) if code else None
        if room is None:
            return None, []
        notices = room.leave(member_id)
        if not room.members:
            self.delete_room(room.code)
        return room, notices

    def kick(self, member_id: str, target_id: str) -> Tuple[Room, List[Notice]]:
        room = self.require_room_of(member_id)
        notices = room.kick(member_id, target_id)
        if target_id not in room.members:
            self._member_rooms.pop(target_id, None)
        return room, notices

    def require_room_of(self, member_id: str) -> Room:
        room = self.room_of(member_id)
        if room is None:
            raise errors.NotInRoom("Join a room first")
        return room

    def delete_room(self, room_code: str) -> Optional[Room]:
        room = self.rooms.pop(room_code, None)
        if room is None:
            return None
        for member_id in room.members:
            self._member_rooms.pop(member_id, None)
        logger.info("Deleted room %s", room_code)
        return room

    def public_rooms(self, page: int = 1) -> Dict[str, object]:
        listed = sorted(
            (room for room in self.rooms.values() if room.settings.is_public),
            key=lambda room: room.created_at,
            reverse=True,
        )
        page_count = max(1, math.ceil(len(listed) / self.page_size))
        page = min(max(1, page), page_count)
        start = (page - 1) * self.page_size
        return {
            "type": "roomList",
            "page": page,
            "pageCount": page_count,
            "total": len(listed),
            "rooms": [room.summary() for room in listed[start : start + self.page_size]],
        }

    def sweep_idle(self, timeout: float) -> List[Tuple[Room, List[str]]]:
        """Delete rooms idle for ``timeout`` seconds.

        Returns each evicted room with the member ids it still held, so the
        caller can tell them the room is gone.
        """

        now = self.clock()
        evicted: List[Tuple[Room, List[str]]] = []
        for code, room in list(self.rooms.items()):
            if not room.is_idle(now, timeout):
                continue
            member_ids = list(room.members)
            self.delete_room(code)
            evicted.append((room, member_ids))
            logger.info("Evicted idle room %s (%d members)", code, len(member_ids))
        return evicted
