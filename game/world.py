import random
import logging
import threading

from .collision import try_move, is_exit
from .game_state import GameState
from .maze import generate_maze, validate_maze, MazeGenerationError
from .registry import PlayerRegistry, SpawnError, find_spawn_cell
from .settings import (
    GRID_SIZE, CELL_SIZE, PLAYER_SIZE, MAX_STEP, LOOP_CHANCE, SIMILARITY,
    EXIT_COUNT, MAX_GENERATION_ATTEMPTS
)


class World:
    """Owner of the shared maze and player table.

    Every operation runs as one critical section under ``lock``: move, exit
    check, regeneration, player reset and snapshot all happen together, so
    no snapshot can mix an old maze with reset players or the other way
    round. The lock never waits on anything else: snapshots are returned
    and sent by the caller after it has been released, and each one carries
    a ``tick`` so senders can tell an older snapshot from a newer one.
    """

    def __init__(self, grid_size=GRID_SIZE, cell_size=CELL_SIZE, player_size=PLAYER_SIZE,
                 max_step=MAX_STEP, loop_chance=LOOP_CHANCE, similarity=SIMILARITY,
                 exit_count=EXIT_COUNT, max_attempts=MAX_GENERATION_ATTEMPTS,
                 rng=None, maze=None, generator=generate_maze):
        self.logger = logging.getLogger(__name__)
        if maze is not None:
            grid_size = maze.size

        if grid_size % 2 == 0 or grid_size < 7:
            raise ValueError(f"Grid size must be odd and at least 7, got {grid_size}")
        if player_size * 2 >= cell_size:
            raise ValueError(f"Player box ({player_size * 2}px) must fit inside a {cell_size}px cell")
        if max_step >= cell_size:
            raise ValueError(f"Max step {max_step} must be smaller than the cell size {cell_size}")
        if max_attempts < 1:
            raise ValueError("Need at least one generation attempt")

        self.grid_size = grid_size
        self.cell_size = cell_size
        self.player_size = player_size
        self.max_step = max_step
        self.loop_chance = loop_chance
        self.similarity = similarity
        self.exit_count = exit_count
        self.max_attempts = max_attempts
        self.generator = generator

        self.lock = threading.Lock()
        self.rng = rng or random.Random()
        self.registry = PlayerRegistry(cell_size, rng=self.rng)
        self.tick = 0
        self.maze = maze if maze is not None else self._generate(previous=None)

    @property
    def center_pixel(self):
        """Pixel coordinate of the middle of the grid, where players reset to"""
        return self.grid_size * self.cell_size / 2

    def _generate(self, previous):
        """Generate a maze that has a spawn cell, retrying a bounded number of times"""
        for attempt in range(1, self.max_attempts + 1):
            maze = self.generator(
                previous,
                grid_size=self.grid_size,
                loop_chance=self.loop_chance,
                similarity=self.similarity,
                exit_count=self.exit_count,
                rng=self.rng
            )
            try:
                find_spawn_cell(maze)
            except SpawnError as e:
                self.logger.error(f"[REGEN] Attempt {attempt}/{self.max_attempts} produced an unplayable maze: {e}")
                continue

            results = validate_maze(maze)
            if not results['overall_valid']:
                self.logger.error(f"[REGEN] Attempt {attempt}/{self.max_attempts} failed validation: {results}")
                continue

            self.logger.info(f"[REGEN] Generated maze #{maze.generation} with exits {list(maze.exits)}")
            return maze
        raise MazeGenerationError(f"No playable maze after {self.max_attempts} attempts")

    def _regenerate(self):
        self.maze = self._generate(previous=self.maze)
        center = self.center_pixel
        self.registry.reset_all(center, center)

    def _snapshot(self):
        return GameState(self.maze, self.registry.snapshot(), self.tick)

    def snapshot(self):
        with self.lock:
            return self._snapshot()

    def connect(self):
        """Spawn a new player; returns ``(player_id, state)``"""
        with self.lock:
            player_id = self.registry.new_id()
            try:
                self.registry.add(player_id, self.maze)
            except SpawnError as e:
                self.logger.error(f"[SPAWN] {e}; regenerating before admitting {player_id}")
                self._regenerate()
                self.registry.add(player_id, self.maze)
            self.tick += 1
            self.logger.info(f"[CONNECT] Player {player_id} joined ({len(self.registry)} online)")
            return player_id, self._snapshot()

    def disconnect(self, player_id):
        """Remove a player; returns the new state, or None if it was not registered"""
        with self.lock:
            if self.registry.remove(player_id) is None:
                return None
            self.tick += 1
            self.logger.info(f"[DISCONNECT] Player {player_id} left ({len(self.registry)} online)")
            return self._snapshot()

    def apply_intent(self, player_id, intent):
        """Move one player, then regenerate if anyone is standing on an exit.

        Returns ``(state, regenerated)``; ``state`` is None for unknown players.
        """
        with self.lock:
            player = self.registry.get(player_id)
            if player is None:
                return None, False

            try_move(self.maze, player, intent.dx, intent.dy, self.cell_size, self.player_size)

            winner = None
            for other in self.registry:
                if is_exit(self.maze, other, self.cell_size):
                    winner = other
                    break

            if winner is not None:
                self.logger.info(f"[EXIT] Player {winner.id} reached an exit at ({winner.x}, {winner.y})")
                self._regenerate()

            self.tick += 1
            return self._snapshot(), winner is not None
