"""OXRooms package exposing the board engines, rooms and the web application."""

from .game import GameKind, TicTacToeGame
from .othello import OthelloGame
from .registry import RoomRegistry
from .room import Room
from .server import app

__all__ = ["GameKind", "OthelloGame", "Room", "RoomRegistry", "TicTacToeGame", "app"]
