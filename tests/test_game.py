"""Unit tests for the tic-tac-toe engine."""

import random

import pytest

from oxrooms.game import (
    EMPTY,
    PIECE_LIMIT,
    GameKind,
    TicTacToeGame,
    create_game,
    generate_win_lines,
    win_length_for,
)
from oxrooms.othello import OthelloGame


def _reflect(lines, size, transform):
    out = set()
    for line in lines:
        cells = []
        for index in line:
            row, col = divmod(index, size)
            r, c = transform(row, col)
            cells.append(r * size + c)
        out.add(frozenset(cells))
    return out


@pytest.mark.parametrize(
    "size, length, count", [(3, 3, 8), (4, 4, 10), (5, 5, 12), (6, 5, 32)]
)
def test_win_lines_for_board_size(size, length, count):
    assert win_length_for(size) == length
    game = TicTacToeGame(board_size=size)
    assert game.win_length == length
    assert len(game.win_lines) == count
    assert all(len(line) == length for line in game.win_lines)


@pytest.mark.parametrize("size", [3, 4, 5, 7])
def test_win_lines_are_symmetric(size):
    lines = generate_win_lines(size, win_length_for(size))
    original = {frozenset(line) for line in lines}
    n = size - 1
    assert _reflect(lines, size, lambda r, c: (r, n - c)) == original
    assert _reflect(lines, size, lambda r, c: (n - r, c)) == original
    assert _reflect(lines, size, lambda r, c: (c, r)) == original


def test_rejects_unsupported_board_size():
    with pytest.raises(ValueError):
        TicTacToeGame(board_size=2)


def test_completing_top_row_wins():
    game = TicTacToeGame()
    game.cells[0] = "O"
    game.cells[1] = "O"
    game.cells[4] = "X"
    game.current_player = "O"

    outcome = game.play_move("O", 2)

    assert outcome.winner == "O"
    assert outcome.winning_line == (0, 1, 2)
    assert outcome.next_player is None
    assert game.finished


def test_win_on_last_empty_cell_is_not_a_draw():
    game = TicTacToeGame()
    game.cells[:] = ["O", "X", "O", "X", "O", "X", "X", "O", EMPTY]
    outcome = game.play_move("O", 8)
    assert outcome.winner == "O"
    assert outcome.drawn is False


def test_full_board_without_line_is_draw():
    game = TicTacToeGame()
    game.cells[:] = ["O", "X", "O", "O", "X", "X", "X", "O", EMPTY]
    outcome = game.play_move("O", 8)
    assert outcome.winner is None
    assert outcome.drawn is True


def test_turns_alternate_and_occupied_cells_are_rejected():
    game = TicTacToeGame()
    game.play_move("O", 4)
    assert game.current_player == "X"

    with pytest.raises(ValueError):
        game.play_move("X", 4)
    with pytest.raises(ValueError):
        game.play_move("O", 0)
    with pytest.raises(ValueError):
        game.play_move("X", 9)
    assert game.cells.count(EMPTY) == 8


def test_limit_mode_removes_oldest_piece():
    game = TicTacToeGame(limit_mode=True)
    for cell in (0, 3, 1, 4, 8, 7):
        game.play_move(game.current_player, cell)
    assert game.oldest_pieces() == {"O": 0, "X": 3}

    outcome = game.play_move("O", 2)

    assert outcome.removed == 0
    assert game.cells[0] == EMPTY
    assert game.cells.count("O") == PIECE_LIMIT
    assert outcome.winner is None


def test_limit_mode_keeps_at_most_three_pieces_per_player():
    rng = random.Random(2024)
    for _ in range(200):
        game = TicTacToeGame(limit_mode=True)
        for _ in range(40):
            if game.finished:
                break
            player = game.current_player
            game.play_move(player, rng.choice(game.available_moves()))
            assert game.cells.count("O") <= PIECE_LIMIT
            assert game.cells.count("X") <= PIECE_LIMIT


def test_limit_mode_is_ignored_on_larger_boards():
    game = TicTacToeGame(board_size=4, limit_mode=True)
    assert not game.limited
    for cell in (0, 5, 1, 6, 2, 9, 7):
        game.play_move(game.current_player, cell)
    assert game.cells.count("O") == 4


def test_create_game_builds_engine_for_kind():
    assert isinstance(create_game(GameKind.OTHELLO), OthelloGame)
    game = create_game(GameKind.TICTACTOE, board_size=5)
    assert isinstance(game, TicTacToeGame)
    assert len(game.cells) == 25
    assert game.snapshot()["winLength"] == 5
