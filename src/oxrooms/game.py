"""Board engine contract and the tic-tac-toe rules."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

Mark = str  # "O" or "X"

O: Mark = "O"
X: Mark = "X"
MARKS: Tuple[Mark, Mark] = (O, X)
EMPTY = ""

MIN_BOARD_SIZE = 3
MAX_BOARD_SIZE = 15
PIECE_LIMIT = 3


class GameKind(str, Enum):
    TICTACTOE = "tictactoe"
    OTHELLO = "othello"


def opponent(mark: Mark) -> Mark:
    return X if mark == O else O


@dataclass
class MoveOutcome:
    """What a single accepted move did to the board.

    ``removed`` is the cell cleared by limit mode, ``flipped`` the disks turned
    over by an Othello capture. ``passed`` means the opponent had no legal
    reply and ``next_player`` is the mover again.
    """

    player: Mark
    cell: int
    next_player: Optional[Mark]
    removed: Optional[int] = None
    flipped: List[int] = field(default_factory=list)
    passed: bool = False
    winner: Optional[Mark] = None
    drawn: bool = False
    winning_line: Optional[Tuple[int, ...]] = None

    @property
    def finished(self) -> bool:
        return self.winner is not None or self.drawn


class BoardGame:
    """Contract shared by the engines a room can host.

    Engines own their board. ``play_move`` either applies a legal move and
    returns a ``MoveOutcome`` or raises ``ValueError`` without touching
    anything.
    """

    kind: GameKind
    cells: List[str]
    current_player: Mark
    winner: Optional[Mark]
    drawn: bool

    @property
    def finished(self) -> bool:
        return self.winner is not None or self.drawn

    def play_move(self, player: Mark, cell: int) -> MoveOutcome:
        raise NotImplementedError

    def available_moves(self) -> List[int]:
        raise NotImplementedError

    def scores(self) -> Dict[Mark, int]:
        return {mark: self.cells.count(mark) for mark in MARKS}

    def snapshot(self) -> Dict[str, object]:
        raise NotImplementedError

    def _check_move(self, player: Mark, cell: int) -> None:
        if self.finished:
            raise ValueError("Game already finished")
        if player != self.current_player:
            raise ValueError("It is not this player's turn")
        if not 0 <= cell < len(self.cells):
            raise ValueError("Cell is outside the board")
        if self.cells[cell] != EMPTY:
            raise ValueError("Cell already occupied")


# ---------- Tic-tac-toe ----------


def win_length_for(board_size: int) -> int:
    if board_size <= 3:
        return 3
    if board_size == 4:
        return 4
    return 5


def generate_win_lines(board_size: int, length: int) -> Tuple[Tuple[int, ...], ...]:
    """Every horizontal, vertical and diagonal run of ``length`` cells."""

    lines: List[Tuple[int, ...]] = []
    for row in range(board_size):
        for col in range(board_size):
            for dr, dc in ((0, 1), (1, 0), (1, 1), (1, -1)):
                end_row = row + dr * (length - 1)
                end_col = col + dc * (length - 1)
                if not (0 <= end_row < board_size and 0 <= end_col < board_size):
                    continue
                lines.append(
                    tuple(
                        (row + dr * k) * board_size + col + dc * k
                        for k in range(length)
                    )
                )
    return tuple(lines)


@dataclass
class TicTacToeGame(BoardGame):
    board_size: int = 3
    limit_mode: bool = False
    current_player: Mark = O
    winner: Optional[Mark] = None
    drawn: bool = False
    winning_line: Optional[Tuple[int, ...]] = None

    kind: GameKind = field(default=GameKind.TICTACTOE, init=False)
    cells: List[str] = field(init=False)
    win_length: int = field(init=False)
    win_lines: Tuple[Tuple[int, ...], ...] = field(init=False, repr=False)
    # Placement order per player, oldest first
    placements: Dict[Mark, Deque[int]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not MIN_BOARD_SIZE <= self.board_size <= MAX_BOARD_SIZE:
            raise ValueError(f"Unsupported board size {self.board_size}")
        self.cells = [EMPTY] * (self.board_size * self.board_size)
        self.win_length = win_length_for(self.board_size)
        self.win_lines = generate_win_lines(self.board_size, self.win_length)
        self.placements = {mark: deque() for mark in MARKS}

    @property
    def limited(self) -> bool:
        """Limit mode only applies to the classic 3x3 board."""
        return self.limit_mode and self.board_size == 3

    def available_moves(self) -> List[int]:
        if self.finished:
            return []
        return [i for i, c in enumerate(self.cells) if c == EMPTY]

    def oldest_pieces(self) -> Dict[Mark, Optional[int]]:
        """The piece each player will lose on their next placement, if any."""
        if not self.limited:
            return {mark: None for mark in MARKS}
        return {
            mark: queue[0] if len(queue) >= PIECE_LIMIT else None
            for mark, queue in self.placements.items()
        }

    def play_move(self, player: Mark, cell: int) -> MoveOutcome:
        self._check_move(player, cell)

        removed: Optional[int] = None
        queue = self.placements[player]
        if self.limited and len(queue) >= PIECE_LIMIT:
            removed = queue.popleft()
            self.cells[removed] = EMPTY
        self.cells[cell] = player
        queue.append(cell)

        # Win is checked before draw: a move that fills the board and wins is a win
        line = self._winning_line(player)
        if line is not None:
            self.winner = player
            self.winning_line = line
        elif all(c != EMPTY for c in self.cells):
            self.drawn = True
        else:
            self.current_player = opponent(player)

        return MoveOutcome(
            player=player,
            cell=cell,
            next_player=None if self.finished else self.current_player,
            removed=removed,
            winner=self.winner,
            drawn=self.drawn,
            winning_line=self.winning_line,
        )

    def snapshot(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "boardSize": self.board_size,
            "winLength": self.win_length,
            "limitMode": self.limited,
            "cells": list(self.cells),
            "currentPlayer": None if self.finished else self.current_player,
        }

    def _winning_line(self, player: Mark) -> Optional[Tuple[int, ...]]:
        for line in self.win_lines:
            if all(self.cells[i] == player for i in line):
                return line
        return None


def create_game(
    kind: GameKind, board_size: int = 3, limit_mode: bool = False
) -> BoardGame:
    """Build a fresh engine for ``kind`` with its starting position."""

    if kind == GameKind.OTHELLO:
        from .othello import OthelloGame

        return OthelloGame()
    return TicTacToeGame(board_size=board_size, limit_mode=limit_mode)
