import random
import string
import logging

from .collision import cell_center
from .maze import MazeGenerationError
from .player import Player
from .settings import CELL_SIZE

ID_ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 8


class SpawnError(MazeGenerationError):
    """No OPEN cell anywhere around the center: the maze is unplayable"""


def find_spawn_cell(maze):
    """Find the OPEN cell nearest the center.

    Searches square rings of growing radius around the center, row by row
    within each ring, and returns the first OPEN cell found.
    """
    cx, cy = maze.center
    for r in range(maze.size):
        for gy in range(cy - r, cy + r + 1):
            for gx in range(cx - r, cx + r + 1):
                # Only the ring itself; the inside was scanned at smaller radii
                if max(abs(gx - cx), abs(gy - cy)) != r:
                    continue
                if maze.is_open(gx, gy):
                    return gx, gy
    raise SpawnError(f"No open cell found in {maze!r}")


class PlayerRegistry:
    """Connected players keyed by id. Not thread-safe on its own; the World
    serializes every access."""

    def __init__(self, cell_size=CELL_SIZE, rng=None):
        self.logger = logging.getLogger(__name__)
        self.players = {}
        self.cell_size = cell_size
        self._rng = rng or random.Random()

    def new_id(self):
        """Random short handle not used by any connected player"""
        while True:
            player_id = ''.join(self._rng.choice(ID_ALPHABET) for _ in range(ID_LENGTH))
            if player_id not in self.players:
                return player_id

    def add(self, player_id, maze):
        """Register a player at the spawn point of ``maze``"""
        if player_id in self.players:
            raise ValueError(f"Player {player_id} is already registered")

        gx, gy = find_spawn_cell(maze)
        x, y = cell_center(gx, gy, self.cell_size)
        player = Player(player_id, x, y)
        self.players[player_id] = player
        self.logger.debug(f"[SPAWN] Player {player_id} at cell ({gx}, {gy}) -> ({x}, {y})")
        return player

    def remove(self, player_id):
        """Remove a player; unknown ids are ignored"""
        return self.players.pop(player_id, None)

    def get(self, player_id):
        return self.players.get(player_id)

    def reset_all(self, x, y):
        for player in self.players.values():
            player.x = x
            player.y = y

    def snapshot(self):
        """Copy of every player as plain dicts"""
        return {player_id: player.to_dict() for player_id, player in self.players.items()}

    def __contains__(self, player_id):
        return player_id in self.players

    def __iter__(self):
        return iter(list(self.players.values()))

    def __len__(self):
        return len(self.players)
