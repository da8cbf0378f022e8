"""Per-connection intent dispatch.

The session handler turns decoded client messages into registry and room
calls, and room notices into per-connection deliveries. It never touches a
socket: the server sends whatever ``handle`` returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from . import errors
from .game import GameKind
from .logging_config import get_logger
from .registry import RoomRegistry
from .room import Audience, Notice, PlayerOrder, Room

logger = get_logger(__name__)

DISPLAY_NAME_MAX_LENGTH = 20
DEFAULT_DISPLAY_NAME = "Guest"


# ---------- Intents ----------


class IntentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SettingsPatch(BaseModel):
    """Partial settings sent by the host; unset fields keep their value."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    board_size: Optional[int] = Field(default=None, alias="boardSize")
    player_order: Optional[PlayerOrder] = Field(default=None, alias="playerOrder")
    limit_mode: Optional[bool] = Field(default=None, alias="limitMode")
    highlight_oldest: Optional[bool] = Field(default=None, alias="highlightOldest")
    is_public: Optional[bool] = Field(default=None, alias="isPublic")
    max_members: Optional[int] = Field(default=None, alias="maxMembers")

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_none=True)


class NamedIntent(IntentModel):
    display_name: str = Field(default=DEFAULT_DISPLAY_NAME, alias="displayName")

    @field_validator("display_name", mode="before")
    @classmethod
    def clean_display_name(cls, value: object) -> str:
        if not isinstance(value, str) or not value.strip():
            return DEFAULT_DISPLAY_NAME
        return value.strip()[:DISPLAY_NAME_MAX_LENGTH]


class CreateRoom(NamedIntent):
    type: Literal["createRoom"]
    game_kind: GameKind = Field(default=GameKind.TICTACTOE, alias="gameKind")
    settings: SettingsPatch = Field(default_factory=SettingsPatch)


class JoinRoom(NamedIntent):
    type: Literal["joinRoom"]
    room_code: str = Field(alias="roomCode", min_length=1, max_length=16)


class UpdateSettings(IntentModel):
    type: Literal["updateSettings"]
    settings: SettingsPatch


class ListRooms(IntentModel):
    type: Literal["listRooms"]
    page: int = Field(default=1, ge=1)


class TakeSlot(IntentModel):
    type: Literal["takeSlot"]
    slot: Literal["O", "X"]


class LeaveSlot(IntentModel):
    type: Literal["leaveSlot"]


class UpdateSlotColor(IntentModel):
    type: Literal["updateSlotColor"]
    color: str = Field(pattern=r"^#[0-9a-fA-F]{6}$")


class Chat(IntentModel):
    type: Literal["chat"]
    text: str = Field(max_length=2000)


class SetReady(IntentModel):
    type: Literal["setReady"]
    ready: Optional[bool] = None


class Move(IntentModel):
    type: Literal["move"]
    cell: int = Field(alias="cellIndex", ge=0)


class DeclareGameOver(IntentModel):
    type: Literal["gameOver"]


class Surrender(IntentModel):
    type: Literal["surrender"]


class ReturnToLobby(IntentModel):
    type: Literal["returnToLobby"]


class ChangeGameKind(IntentModel):
    type: Literal["changeGameKind"]
    game_kind: GameKind = Field(alias="gameKind")


class Kick(IntentModel):
    type: Literal["kick"]
    member_id: str = Field(alias="memberId")


Intent = Annotated[
    Union[
        CreateRoom,
        JoinRoom,
        UpdateSettings,
        ListRooms,
        TakeSlot,
        LeaveSlot,
        UpdateSlotColor,
        Chat,
        SetReady,
        Move,
        DeclareGameOver,
        Surrender,
        ReturnToLobby,
        ChangeGameKind,
        Kick,
    ],
    Field(discriminator="type"),
]
INTENTS: TypeAdapter = TypeAdapter(Intent)


# ---------- Dispatch ----------


@dataclass
class Delivery:
    connection_id: str
    payload: Dict[str, object]


Outcome = Tuple[Optional[Room], List[Notice]]


class SessionHandler:
    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry
        self._handlers: Dict[str, Callable[[str, BaseModel], Outcome]] = {
            "createRoom": self._create_room,
            "joinRoom": self._join_room,
            "updateSettings": self._update_settings,
            "listRooms": self._list_rooms,
            "takeSlot": self._take_slot,
            "leaveSlot": self._leave_slot,
            "updateSlotColor": self._update_slot_color,
            "chat": self._chat,
            "setReady": self._set_ready,
            "move": self._move,
            "gameOver": self._declare_game_over,
            "surrender": self._surrender,
            "returnToLobby": self._return_to_lobby,
            "changeGameKind": self._change_game_kind,
            "kick": self._kick,
        }

    def handle(self, connection_id: str, message: object) -> List[Delivery]:
        """Apply one decoded client message and return what to send, and to whom."""

        try:
            intent = INTENTS.validate_python(message)
        except ValidationError as exc:
            logger.debug("Dropped malformed message from %s: %s", connection_id, exc)
            return []

        try:
            room, notices = self._handlers[intent.type](connection_id, intent)
        except errors.RoomError as exc:
            logger.debug(
                "Rejected %s from %s: %s", intent.type, connection_id, exc.message
            )
            return [
                Delivery(
                    connection_id,
                    {"type": "error", "code": exc.code, "message": exc.message},
                )
            ]

        if room is not None:
            room.touch()
        return self._route(connection_id, room, notices)

    def disconnect(self, connection_id: str) -> List[Delivery]:
        room, notices = self.registry.leave(connection_id)
        return self._route(connection_id, room, notices)

    def sweep(self, timeout: float) -> List[Delivery]:
        deliveries: List[Delivery] = []
        for room, member_ids in self.registry.sweep_idle(timeout):
            payload = {"type": "roomClosed", "roomCode": room.code, "reason": "idle"}
            deliveries.extend(Delivery(mid, payload) for mid in member_ids)
        return deliveries

    def _route(
        self, caller: str, room: Optional[Room], notices: List[Notice]
    ) -> List[Delivery]:
        members = list(room.members) if room is not None else []
        deliveries: List[Delivery] = []
        for notice in notices:
            if notice.audience == Audience.CALLER:
                targets = [caller]
            elif notice.audience == Audience.MEMBER:
                targets = [notice.member_id] if notice.member_id else []
            elif notice.audience == Audience.OTHERS:
                targets = [mid for mid in members if mid != caller]
            else:
                targets = members
            deliveries.extend(Delivery(target, notice.payload) for target in targets)
        return deliveries

    # ---- intent handlers ----

    def _create_room(self, cid: str, intent: CreateRoom) -> Outcome:
        return self.registry.create_room(
            cid, intent.display_name, intent.game_kind, intent.settings.changes()
        )

    def _join_room(self, cid: str, intent: JoinRoom) -> Outcome:
        return self.registry.join_room(cid, intent.room_code, intent.display_name)

    def _list_rooms(self, cid: str, intent: ListRooms) -> Outcome:
        notice = Notice(Audience.CALLER, self.registry.public_rooms(intent.page))
        return None, [notice]

    def _update_settings(self, cid: str, intent: UpdateSettings) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.update_settings(cid, intent.settings.changes())

    def _take_slot(self, cid: str, intent: TakeSlot) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.take_slot(cid, intent.slot)

    def _leave_slot(self, cid: str, intent: LeaveSlot) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.leave_slot(cid)

    def _update_slot_color(self, cid: str, intent: UpdateSlotColor) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.update_slot_color(cid, intent.color)

    def _chat(self, cid: str, intent: Chat) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.chat(cid, intent.text)

    def _set_ready(self, cid: str, intent: SetReady) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.set_ready(cid, intent.ready)

    def _move(self, cid: str, intent: Move) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.move(cid, intent.cell)

    def _declare_game_over(self, cid: str, intent: DeclareGameOver) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.declare_game_over(cid)

    def _surrender(self, cid: str, intent: Surrender) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.surrender(cid)

    def _return_to_lobby(self, cid: str, intent: ReturnToLobby) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.return_to_lobby(cid)

    def _change_game_kind(self, cid: str, intent: ChangeGameKind) -> Outcome:
        room = self.registry.require_room_of(cid)
        return room, room.change_game_kind(cid, intent.game_kind)

    def _kick(self, cid: str, intent: Kick) -> Outcome:
        return self.registry.kick(cid, intent.member_id)
