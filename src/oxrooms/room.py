"""Room state machine: membership, slots and the lobby/match/post-match cycle.

Every public operation validates first and mutates second, so a refused intent
raises a ``RoomError`` and leaves the room untouched. Accepted operations
return the ``Notice`` records the session layer fans out to connections.
"""

from __future__ import annotations

import random
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import errors
from .game import (
    MARKS,
    O,
    X,
    BoardGame,
    GameKind,
    Mark,
    MoveOutcome,
    TicTacToeGame,
    create_game,
    opponent,
)
from .logging_config import get_logger

logger = get_logger(__name__)

SPECTATOR = "spectator"

SLOT_EXCLUSION_SECONDS = 10.0
CHAT_MAX_LENGTH = 200
CHAT_RATE_LIMIT = 5
CHAT_RATE_WINDOW = 10.0
MIN_MEMBERS = 2
MAX_MEMBERS = 100
DEFAULT_SLOT_COLORS: Dict[Mark, str] = {O: "#e74c3c", X: "#3498db"}
OTHELLO_BOARD_SIZE = 8
OTHELLO_PINNED: Dict[str, object] = {
    "board_size": OTHELLO_BOARD_SIZE,
    "limit_mode": False,
    "highlight_oldest": False,
}


class Phase(str, Enum):
    LOBBY = "lobby"
    IN_MATCH = "inMatch"
    POST_MATCH = "postMatch"


class PlayerOrder(str, Enum):
    HOST_O = "hostO"
    HOST_X = "hostX"
    RANDOM = "random"
    ASSIGNED = "assigned"


class RoomSettings(BaseModel):
    """Host-editable room settings."""

    model_config = ConfigDict(populate_by_name=True)

    board_size: int = Field(default=3, alias="boardSize", ge=3, le=15)
    player_order: PlayerOrder = Field(default=PlayerOrder.RANDOM, alias="playerOrder")
    limit_mode: bool = Field(default=False, alias="limitMode")
    highlight_oldest: bool = Field(default=False, alias="highlightOldest")
    is_public: bool = Field(default=True, alias="isPublic")
    max_members: int = Field(
        default=10, alias="maxMembers", ge=MIN_MEMBERS, le=MAX_MEMBERS
    )

    @classmethod
    def defaults_for(cls, kind: GameKind, **overrides: object) -> "RoomSettings":
        return cls(**overrides).for_kind(kind)

    @classmethod
    def parse_for(cls, kind: GameKind, data: Dict[str, object]) -> "RoomSettings":
        """Validate host-supplied settings, ignoring fields ``kind`` pins."""
        if kind == GameKind.OTHELLO:
            pinned = set(OTHELLO_PINNED)
            pinned.update(cls.model_fields[name].alias for name in OTHELLO_PINNED)
            data = {key: value for key, value in data.items() if key not in pinned}
        return cls.model_validate(data).for_kind(kind)

    def for_kind(self, kind: GameKind) -> "RoomSettings":
        """Pin the fields a game kind does not let the host choose."""
        if kind == GameKind.OTHELLO:
            return self.model_copy(update=OTHELLO_PINNED)
        return self

    def to_wire(self) -> Dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class Audience(str, Enum):
    CALLER = "caller"
    MEMBER = "member"
    OTHERS = "others"
    ALL = "all"


@dataclass
class Notice:
    """An outbound notification and who should receive it."""

    audience: Audience
    payload: Dict[str, object]
    member_id: Optional[str] = None


def _to_all(payload: Dict[str, object]) -> Notice:
    return Notice(Audience.ALL, payload)


def _to_caller(payload: Dict[str, object]) -> Notice:
    return Notice(Audience.CALLER, payload)


def _to_member(member_id: str, payload: Dict[str, object]) -> Notice:
    return Notice(Audience.MEMBER, payload, member_id=member_id)


def _to_others(payload: Dict[str, object]) -> Notice:
    return Notice(Audience.OTHERS, payload)


@dataclass
class Member:
    member_id: str
    display_name: str
    joined_at: float
    role: str = SPECTATOR
    ready: bool = False
    slot_exclusion_until: float = 0.0
    chat_times: Deque[float] = field(default_factory=deque, repr=False)

    @property
    def seated(self) -> bool:
        return self.role != SPECTATOR

    def to_wire(self) -> Dict[str, object]:
        return {
            "id": self.member_id,
            "name": self.display_name,
            "role": self.role,
            "ready": self.ready,
        }


@dataclass
class Room:
    code: str
    game_kind: GameKind = GameKind.TICTACTOE
    settings: RoomSettings = field(default_factory=RoomSettings)
    clock: Callable[[], float] = field(default=time.time, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    members: Dict[str, Member] = field(default_factory=dict)
    slots: Dict[Mark, Optional[str]] = field(default_factory=lambda: {O: None, X: None})
    slot_colors: Dict[Mark, str] = field(
        default_factory=lambda: dict(DEFAULT_SLOT_COLORS)
    )
    host_id: Optional[str] = None
    phase: Phase = Phase.LOBBY
    game: Optional[BoardGame] = field(default=None, repr=False)
    last_result: Optional[Dict[str, object]] = field(default=None, repr=False)
    created_at: float = field(init=False)
    last_activity_at: float = field(init=False)

    def __post_init__(self) -> None:
        self.settings = self.settings.for_kind(self.game_kind)
        self.created_at = self.last_activity_at = self.clock()

    # ---- views ----

    def touch(self) -> None:
        self.last_activity_at = self.clock()

    def is_idle(self, now: float, timeout: float) -> bool:
        return now - self.last_activity_at >= timeout

    def seated_members(self) -> List[Member]:
        return [self.members[mid] for mid in self.slots.values() if mid is not None]

    def board_state(self) -> Optional[Dict[str, object]]:
        if self.game is None:
            return None
        board = self.game.snapshot()
        if isinstance(self.game, TicTacToeGame) and self.settings.highlight_oldest:
            board["oldest"] = self.game.oldest_pieces()
        return board

    def lobby_state(self) -> Dict[str, object]:
        host = self.members.get(self.host_id) if self.host_id else None
        return {
            "type": "lobbyState",
            "roomCode": self.code,
            "gameKind": self.game_kind.value,
            "phase": self.phase.value,
            "hostId": self.host_id,
            "hostName": host.display_name if host else None,
            "settings": self.settings.to_wire(),
            "slots": dict(self.slots),
            "slotColors": dict(self.slot_colors),
            "members": [m.to_wire() for m in self.members.values()],
            "board": self.board_state(),
        }

    def summary(self) -> Dict[str, object]:
        host = self.members.get(self.host_id) if self.host_id else None
        return {
            "roomCode": self.code,
            "gameKind": self.game_kind.value,
            "phase": self.phase.value,
            "hostName": host.display_name if host else None,
            "memberCount": len(self.members),
            "maxMembers": self.settings.max_members,
            "openSlots": [mark for mark in MARKS if self.slots[mark] is None],
            "isPublic": self.settings.is_public,
        }

    # ---- membership ----

    def join(
        self, member_id: str, display_name: str, notice_type: str = "roomJoined"
    ) -> List[Notice]:
        if member_id in self.members:
            raise errors.AlreadyInRoom("Already a member of this room")
        if len(self.members) >= self.settings.max_members:
            raise errors.RoomFull(f"Room {self.code} is full")

        self.members[member_id] = Member(
            member_id=member_id, display_name=display_name, joined_at=self.clock()
        )
        if self.host_id is None:
            self.host_id = member_id
        logger.info(
            "%s joined room %s (%d members)", display_name, self.code, len(self.members)
        )
        return [
            _to_caller(
                {
                    "type": notice_type,
                    "roomCode": self.code,
                    "memberId": member_id,
                    "isHost": self.host_id == member_id,
                    "lobby": self.lobby_state(),
                }
            ),
            _to_others(self.lobby_state()),
        ]

    def leave(self, member_id: str) -> List[Notice]:
        """Remove a member whose connection is gone.

        A seated player leaving a match in progress (or its aftermath) sends the
        room back to the lobby with both slots emptied.
        """

        member = self.members.get(member_id)
        if member is None:
            return []

        notices: List[Notice] = []
        if member.seated:
            if self.phase in (Phase.IN_MATCH, Phase.POST_MATCH):
                self._abandon_match()
                notices.append(
                    _to_all(
                        {
                            "type": "opponentDisconnected",
                            "memberId": member_id,
                            "name": member.display_name,
                        }
                    )
                )
            else:
                notices.append(_to_all(self._slot_left(member)))
                self._vacate(member)

        del self.members[member_id]
        logger.info("%s left room %s", member.display_name, self.code)
        if self.host_id == member_id:
            self._transfer_host()
        if self.members:
            notices.append(_to_all(self.lobby_state()))
        return notices

    def kick(self, member_id: str, target_id: str) -> List[Notice]:
        self._require_host(member_id)
        if target_id == self.host_id:
            raise errors.CannotKickHost("The host cannot be kicked")
        target = self.members.get(target_id)
        if target is None:
            raise errors.MemberNotFound(f"Member {target_id} is not in this room")

        notices: List[Notice] = []
        if target.seated:
            target.slot_exclusion_until = self.clock() + SLOT_EXCLUSION_SECONDS
            notices.append(
                _to_member(
                    target_id,
                    {
                        "type": "kicked",
                        "fromSlot": True,
                        "retryAfter": SLOT_EXCLUSION_SECONDS,
                    },
                )
            )
            notices.append(_to_all(self._slot_left(target)))
            if self.phase in (Phase.IN_MATCH, Phase.POST_MATCH):
                self._abandon_match()
            else:
                self._vacate(target)
        else:
            del self.members[target_id]
            notices.append(_to_member(target_id, {"type": "kicked", "fromSlot": False}))
        logger.info("%s kicked %s in room %s", member_id, target_id, self.code)
        notices.append(_to_all(self.lobby_state()))
        return notices

    # ---- slots ----

    def take_slot(self, member_id: str, mark: Mark) -> List[Notice]:
        member = self._member(member_id)
        self._require_phase(Phase.LOBBY)
        if member.seated:
            raise errors.AlreadySeated(f"Already seated as {member.role}")
        if self.slots[mark] is not None:
            raise errors.SlotOccupied(f"Slot {mark} is taken")
        remaining = member.slot_exclusion_until - self.clock()
        if remaining > 0:
            raise errors.SlotExcluded(remaining)

        self.slots[mark] = member_id
        member.role = mark
        member.ready = False
        return [
            _to_all(
                {
                    "type": "slotTaken",
                    "slot": mark,
                    "memberId": member_id,
                    "name": member.display_name,
                }
            ),
            _to_all(self.lobby_state()),
        ]

    def leave_slot(self, member_id: str) -> List[Notice]:
        member = self._member(member_id)
        self._require_phase(Phase.LOBBY)
        self._require_seated(member)
        notice = self._slot_left(member)
        self._vacate(member)
        return [_to_all(notice), _to_all(self.lobby_state())]

    def update_slot_color(self, member_id: str, color: str) -> List[Notice]:
        member = self._member(member_id)
        self._require_seated(member)
        self.slot_colors[member.role] = color
        return [_to_all(self.lobby_state())]

    def set_ready(self, member_id: str, ready: Optional[bool] = None) -> List[Notice]:
        member = self._member(member_id)
        self._require_phase(Phase.LOBBY)
        self._require_seated(member)

        member.ready = (not member.ready) if ready is None else ready
        seated = self.seated_members()
        if len(seated) == 2 and all(m.ready for m in seated):
            return self._start_match()
        return [_to_all(self.lobby_state())]

    # ---- host operations ----

    def update_settings(self, member_id: str, changes: Dict[str, object]) -> List[Notice]:
        self._require_host(member_id)
        self._require_phase(Phase.LOBBY)
        try:
            updated = RoomSettings.parse_for(
                self.game_kind, {**self.settings.model_dump(), **changes}
            )
        except ValidationError as exc:
            raise errors.InvalidSettings(str(exc)) from exc
        if updated.max_members < len(self.members):
            raise errors.InvalidSettings(
                f"Room already has {len(self.members)} members"
            )

        self.settings = updated
        self._clear_ready()
        return [
            _to_all({"type": "settingsChanged", "settings": self.settings.to_wire()}),
            _to_all(self.lobby_state()),
        ]

    def change_game_kind(self, member_id: str, kind: GameKind) -> List[Notice]:
        self._require_host(member_id)
        self._require_phase(Phase.LOBBY)

        self.game_kind = kind
        self.settings = RoomSettings.defaults_for(
            kind,
            is_public=self.settings.is_public,
            max_members=self.settings.max_members,
        )
        self._clear_ready()
        logger.info("Room %s switched to %s", self.code, kind.value)
        return [
            _to_all(
                {
                    "type": "settingsChanged",
                    "gameKind": kind.value,
                    "settings": self.settings.to_wire(),
                }
            ),
            _to_all(self.lobby_state()),
        ]

    # ---- chat ----

    def chat(self, member_id: str, text: str) -> List[Notice]:
        member = self._member(member_id)
        text = text.strip()[:CHAT_MAX_LENGTH]
        if not text:
            return []
        now = self.clock()
        while member.chat_times and now - member.chat_times[0] >= CHAT_RATE_WINDOW:
            member.chat_times.popleft()
        if len(member.chat_times) >= CHAT_RATE_LIMIT:
            raise errors.ChatRateLimited("You are sending messages too quickly")

        member.chat_times.append(now)
        return [
            _to_all(
                {
                    "type": "chat",
                    "memberId": member_id,
                    "name": member.display_name,
                    "role": member.role,
                    "text": text,
                    "sentAt": now,
                }
            )
        ]

    # ---- match ----

    def move(self, member_id: str, cell: int) -> List[Notice]:
        member = self._member(member_id)
        self._require_phase(Phase.IN_MATCH)
        self._require_seated(member)
        game = self.game
        if game is None:
            raise errors.WrongPhase("No match is being played")
        if game.current_player != member.role:
            raise errors.NotYourTurn("It is not your turn")
        try:
            outcome = game.play_move(member.role, cell)
        except ValueError as exc:
            raise errors.IllegalMove(str(exc)) from exc

        notices = [_to_all(self._board_update(outcome))]
        if outcome.passed:
            notices.append(
                _to_all(
                    {
                        "type": "passTurn",
                        "skipped": opponent(outcome.player),
                        "currentPlayer": outcome.next_player,
                    }
                )
            )
        if outcome.finished:
            notices.extend(
                self._finish_match(
                    outcome.winner,
                    reason=self._finish_reason(outcome.winning_line),
                    winning_line=outcome.winning_line,
                )
            )
        return notices

    def surrender(self, member_id: str) -> List[Notice]:
        member = self._member(member_id)
        self._require_phase(Phase.IN_MATCH)
        self._require_seated(member)
        logger.info("%s surrendered in room %s", member.display_name, self.code)
        return self._finish_match(opponent(member.role), reason="surrender")

    def declare_game_over(self, member_id: str) -> List[Notice]:
        """Replay the final result to the caller once the match has ended.

        ``move`` settles a terminal board as soon as it is reached, so a claim
        made while the match is still in play is always refused.
        """

        member = self._member(member_id)
        if self.phase == Phase.POST_MATCH and self.last_result is not None:
            return [_to_caller(self.last_result)]
        self._require_phase(Phase.IN_MATCH)
        self._require_seated(member)
        raise errors.GameNotOver("The match is still being played")

    def return_to_lobby(self, member_id: str) -> List[Notice]:
        member = self._member(member_id)
        self._require_phase(Phase.POST_MATCH)
        self._require_seated(member)

        member.ready = True
        seated = self.seated_members()
        if not all(m.ready for m in seated):
            return [_to_all(self.lobby_state())]

        notices = [_to_all(self._slot_left(m)) for m in seated]
        for m in seated:
            self._vacate(m)
        self.phase = Phase.LOBBY
        self.game = None
        logger.info("Room %s is back in the lobby", self.code)
        notices.append(_to_all(self.lobby_state()))
        return notices

    # ---- internals ----

    def _start_match(self) -> List[Notice]:
        self._clear_ready()
        swapped = self._resolve_player_order()
        self.game = create_game(
            self.game_kind,
            board_size=self.settings.board_size,
            limit_mode=self.settings.limit_mode,
        )
        self.phase = Phase.IN_MATCH
        self.last_result = None

        players = {
            mark: {"id": mid, "name": self.members[mid].display_name}
            for mark, mid in self.slots.items()
            if mid is not None
        }
        logger.info(
            "Match started in room %s: %s (O) vs %s (X)",
            self.code,
            players[O]["name"],
            players[X]["name"],
        )
        board = self.board_state()
        notices = [
            _to_member(
                member.member_id,
                {
                    "type": "matchStarting",
                    "gameKind": self.game_kind.value,
                    "mark": member.role if member.seated else None,
                    "players": players,
                    "slotColors": dict(self.slot_colors),
                    "swapped": swapped,
                    "settings": self.settings.to_wire(),
                    "board": board,
                },
            )
            for member in self.members.values()
        ]
        notices.append(_to_all(self.lobby_state()))
        return notices

    def _resolve_player_order(self) -> bool:
        """Apply ``player_order``; returns True when the two players swapped seats."""

        order = self.settings.player_order
        swap = False
        if order == PlayerOrder.RANDOM:
            swap = self.rng.random() < 0.5
        elif order in (PlayerOrder.HOST_O, PlayerOrder.HOST_X):
            preferred = O if order == PlayerOrder.HOST_O else X
            host = self.members.get(self.host_id) if self.host_id else None
            swap = host is not None and host.seated and host.role != preferred
        if not swap:
            return False

        self.slots[O], self.slots[X] = self.slots[X], self.slots[O]
        # Colours follow the players who picked them
        self.slot_colors[O], self.slot_colors[X] = self.slot_colors[X], self.slot_colors[O]
        for mark, mid in self.slots.items():
            if mid is not None:
                self.members[mid].role = mark
        return True

    def _finish_match(
        self,
        winner: Optional[Mark],
        reason: str,
        winning_line: Optional[Tuple[int, ...]] = None,
    ) -> List[Notice]:
        self.phase = Phase.POST_MATCH
        self._clear_ready()
        result: Dict[str, object] = {
            "type": "gameOver",
            "winner": winner,
            "winnerId": self.slots[winner] if winner else None,
            "draw": winner is None,
            "reason": reason,
            "winningLine": list(winning_line) if winning_line else None,
            "scores": self.game.scores() if self.game is not None else None,
            "board": self.board_state(),
        }
        self.last_result = result
        logger.info(
            "Match over in room %s: %s (%s)", self.code, winner or "draw", reason
        )
        return [_to_all(result)]

    def _finish_reason(self, winning_line: Optional[Tuple[int, ...]]) -> str:
        if winning_line is not None:
            return "line"
        if self.game_kind == GameKind.OTHELLO:
            return "noMoves"
        return "draw"

    def _board_update(self, outcome: MoveOutcome) -> Dict[str, object]:
        return {
            "type": "boardUpdate",
            "move": {
                "player": outcome.player,
                "cell": outcome.cell,
                "removed": outcome.removed,
                "flipped": list(outcome.flipped),
            },
            "board": self.board_state(),
        }

    def _abandon_match(self) -> None:
        for member in self.seated_members():
            self._vacate(member)
        self._clear_ready()
        self.phase = Phase.LOBBY
        self.game = None
        logger.info("Match in room %s abandoned", self.code)

    def _vacate(self, member: Member) -> None:
        if member.seated:
            self.slots[member.role] = None
        member.role = SPECTATOR
        member.ready = False

    def _slot_left(self, member: Member) -> Dict[str, object]:
        return {"type": "slotLeft", "slot": member.role, "memberId": member.member_id}

    def _clear_ready(self) -> None:
        for member in self.members.values():
            member.ready = False

    def _transfer_host(self) -> None:
        # Members are kept in join order, so this is the longest-standing member
        self.host_id = next(iter(self.members), None)
        if self.host_id is not None:
            logger.info("Host of room %s passed to %s", self.code, self.host_id)

    def _member(self, member_id: str) -> Member:
        member = self.members.get(member_id)
        if member is None:
            raise errors.NotInRoom(f"Not a member of room {self.code}")
        return member

    def _require_host(self, member_id: str) -> Member:
        member = self._member(member_id)
        if member_id != self.host_id:
            raise errors.NotHost("Only the host can do that")
        return member

    def _require_phase(self, *phases: Phase) -> None:
        if self.phase not in phases:
            raise errors.WrongPhase(f"Not allowed while the room is in {self.phase.value}")

    @staticmethod
    def _require_seated(member: Member) -> None:
        if not member.seated:
            raise errors.NotSeated("Take a slot first")
