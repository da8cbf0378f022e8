"""Othello rules: bracket captures, legal moves, passes and disk counts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .game import EMPTY, O, X, BoardGame, GameKind, Mark, MoveOutcome, opponent

BOARD_SIZE = 8

# (row delta, col delta) for the eight compass directions
DIRECTIONS = tuple(
    (dr, dc) for dr in (-1, 0, 1) for dc in (-1, 0, 1) if dr or dc
)


def start_cells() -> List[str]:
    """Standard opening: two disks of each colour crossed in the centre."""
    cells = [EMPTY] * (BOARD_SIZE * BOARD_SIZE)
    cells[3 * BOARD_SIZE + 3] = O
    cells[4 * BOARD_SIZE + 4] = O
    cells[3 * BOARD_SIZE + 4] = X
    cells[4 * BOARD_SIZE + 3] = X
    return cells


def captures(cells: Sequence[str], player: Mark, cell: int) -> List[int]:
    """Cells flipped if ``player`` places a disk on ``cell``.

    Each direction is walked in (row, col) coordinates so a run stops at the
    board edge instead of wrapping onto the neighbouring row.
    """

    if cells[cell] != EMPTY:
        return []
    other = opponent(player)
    row, col = divmod(cell, BOARD_SIZE)
    flipped: List[int] = []
    for dr, dc in DIRECTIONS:
        run: List[int] = []
        r, c = row + dr, col + dc
        while 0 <= r < BOARD_SIZE and 0 <= c < BOARD_SIZE:
            index = r * BOARD_SIZE + c
            if cells[index] != other:
                break
            run.append(index)
            r, c = r + dr, c + dc
        else:
            # Ran off the board without meeting one of our own disks
            continue
        if run and cells[r * BOARD_SIZE + c] == player:
            flipped.extend(run)
    return flipped


def legal_moves(cells: Sequence[str], player: Mark) -> List[int]:
    return [i for i in range(len(cells)) if captures(cells, player, i)]


@dataclass
class OthelloGame(BoardGame):
    current_player: Mark = O
    winner: Optional[Mark] = None
    drawn: bool = False

    kind: GameKind = field(default=GameKind.OTHELLO, init=False)
    cells: List[str] = field(default_factory=start_cells)

    def available_moves(self) -> List[int]:
        if self.finished:
            return []
        return legal_moves(self.cells, self.current_player)

    def play_move(self, player: Mark, cell: int) -> MoveOutcome:
        self._check_move(player, cell)
        flipped = captures(self.cells, player, cell)
        if not flipped:
            raise ValueError("Move does not capture any disks")

        self.cells[cell] = player
        for index in flipped:
            self.cells[index] = player

        passed = False
        other = opponent(player)
        if legal_moves(self.cells, other):
            self.current_player = other
        elif legal_moves(self.cells, player):
            # Opponent is stuck; the mover goes again
            self.current_player = player
            passed = True
        else:
            self._finish()

        return MoveOutcome(
            player=player,
            cell=cell,
            next_player=None if self.finished else self.current_player,
            flipped=flipped,
            passed=passed,
            winner=self.winner,
            drawn=self.drawn,
        )

    def snapshot(self) -> dict:
        return {
            "kind": self.kind.value,
            "boardSize": BOARD_SIZE,
            "cells": list(self.cells),
            "currentPlayer": None if self.finished else self.current_player,
            "legalMoves": self.available_moves(),
            "scores": self.scores(),
        }

    def _finish(self) -> None:
        scores = self.scores()
        if scores[O] > scores[X]:
            self.winner = O
        elif scores[X] > scores[O]:
            self.winner = X
        else:
            self.drawn = True
