import random
import logging
from collections import deque

from .settings import (
    GRID_SIZE, LOOP_CHANCE, SIMILARITY, EXIT_COUNT, WALL, OPEN
)

logger = logging.getLogger(__name__)

# 4-directional neighbours; carving jumps two cells at a time
STEPS = [(1, 0), (-1, 0), (0, 1), (0, -1)]
CARVE_STEPS = [(2, 0), (-2, 0), (0, 2), (0, -2)]


class MazeGenerationError(Exception):
    """Raised when the generator cannot hand out a playable maze"""


class Maze:
    """Immutable square grid of WALL/OPEN cells.

    Cells are indexed ``cells[y][x]``. ``exits`` lists the boundary cells that
    were forced open during generation and ``generation`` counts how many
    mazes this process has produced up to and including this one.
    """

    def __init__(self, cells, exits=(), generation=1):
        self.cells = tuple(tuple(row) for row in cells)
        self.size = len(self.cells)
        if any(len(row) != self.size for row in self.cells):
            raise ValueError("Maze must be square")
        self.exits = tuple(tuple(cell) for cell in exits)
        self.generation = generation

    @property
    def center(self):
        return self.size // 2, self.size // 2

    def in_bounds(self, gx, gy):
        return 0 <= gx < self.size and 0 <= gy < self.size

    def is_open(self, gx, gy):
        return self.in_bounds(gx, gy) and self.cells[gy][gx] == OPEN

    def is_wall(self, gx, gy):
        return self.in_bounds(gx, gy) and self.cells[gy][gx] == WALL

    def is_boundary(self, gx, gy):
        """True for in-bounds cells on the outer ring"""
        if not self.in_bounds(gx, gy):
            return False
        last = self.size - 1
        return gx == 0 or gy == 0 or gx == last or gy == last

    def to_list(self):
        """Grid as nested lists of 0/1 for JSON serialization"""
        return [list(row) for row in self.cells]

    def __repr__(self):
        return f"<Maze {self.size}x{self.size} generation={self.generation} exits={list(self.exits)}>"


def inward_cell(gx, gy, size):
    """Interior cell directly inside a boundary cell"""
    dx = dy = 0
    if gx == 0:
        dx = 1
    elif gx == size - 1:
        dx = -1
    if gy == 0:
        dy = 1
    elif gy == size - 1:
        dy = -1
    return gx + dx, gy + dy


def center_region(size):
    """The 2x2 block around the center that is always carved open"""
    c = size // 2
    return [(c, c), (c - 1, c), (c, c - 1), (c - 1, c - 1)]


def _flood_fill(grid, start):
    """Breadth-first search over OPEN cells of a raw grid"""
    size = len(grid)
    sx, sy = start
    if not (0 <= sx < size and 0 <= sy < size) or grid[sy][sx] != OPEN:
        return set()

    visited = {start}
    queue = deque([start])
    while queue:
        x, y = queue.popleft()
        for dx, dy in STEPS:
            nx, ny = x + dx, y + dy
            if (nx, ny) in visited:
                continue
            if 0 <= nx < size and 0 <= ny < size and grid[ny][nx] == OPEN:
                visited.add((nx, ny))
                queue.append((nx, ny))
    return visited


def reachable_cells(maze, start=None):
    """All OPEN cells connected to ``start`` (the center by default)"""
    return _flood_fill(maze.cells, start if start is not None else maze.center)


def _carve(grid, rng):
    """Depth-first backtracker from (1, 1) using an explicit stack"""
    size = len(grid)
    grid[1][1] = OPEN
    stack = [(1, 1)]

    while stack:
        x, y = stack[-1]
        neighbours = []
        for dx, dy in CARVE_STEPS:
            nx, ny = x + dx, y + dy
            if 0 < nx < size - 1 and 0 < ny < size - 1 and grid[ny][nx] == WALL:
                neighbours.append((nx, ny))

        if not neighbours:
            stack.pop()
            continue

        nx, ny = rng.choice(neighbours)
        grid[ny][nx] = OPEN
        grid[(y + ny) // 2][(x + nx) // 2] = OPEN
        stack.append((nx, ny))


def _punch_loops(grid, rng, loop_chance):
    """Open one side of random pillars so the perfect maze gets some cycles"""
    size = len(grid)
    for y in range(2, size - 2, 2):
        for x in range(2, size - 2, 2):
            if rng.random() < loop_chance:
                dx, dy = rng.choice(STEPS)
                grid[y + dy][x + dx] = OPEN


def _boundary_candidates(size):
    """Every boundary cell except the four corners"""
    edges = []
    for i in range(1, size - 1):
        edges.append((i, 0))
        edges.append((i, size - 1))
        edges.append((0, i))
        edges.append((size - 1, i))
    return edges


def _connects_exits(grid, start, exits):
    reachable = _flood_fill(grid, start)
    return all(cell in reachable for cell in exits)


def generate_maze(previous=None, grid_size=GRID_SIZE, loop_chance=LOOP_CHANCE,
                  similarity=SIMILARITY, exit_count=EXIT_COUNT, rng=None):
    """Generate a connected maze with ``exit_count`` reachable boundary exits.

    When ``previous`` is given, a ``similarity`` fraction of interior cells is
    copied over from it afterwards. Exits, the cells just inside them and the
    center region are never copied, and the copy is thrown away entirely if it
    would cut the center off from any exit.
    """
    if grid_size % 2 == 0 or grid_size < 7:
        raise ValueError(f"grid_size must be odd and at least 7, got {grid_size}")
    if exit_count < 2:
        raise ValueError(f"exit_count must be at least 2, got {exit_count}")
    rng = rng or random.Random()

    grid = [[WALL] * grid_size for _ in range(grid_size)]
    _carve(grid, rng)
    _punch_loops(grid, rng, loop_chance)

    exits = rng.sample(_boundary_candidates(grid_size), exit_count)
    protected = set()
    for ex, ey in exits:
        ix, iy = inward_cell(ex, ey, grid_size)
        grid[ey][ex] = OPEN
        grid[iy][ix] = OPEN
        protected.add((ex, ey))
        protected.add((ix, iy))

    for cx, cy in center_region(grid_size):
        grid[cy][cx] = OPEN
        protected.add((cx, cy))

    generation = previous.generation + 1 if previous is not None else 1

    if previous is not None and similarity > 0:
        if previous.size != grid_size:
            logger.warning(f"[REGEN] Previous maze is {previous.size}x{previous.size}, skipping similarity pass")
        else:
            blended = [row[:] for row in grid]
            copied = 0
            for y in range(1, grid_size - 1):
                for x in range(1, grid_size - 1):
                    if (x, y) in protected:
                        continue
                    if rng.random() < similarity:
                        blended[y][x] = previous.cells[y][x]
                        copied += 1

            center = (grid_size // 2, grid_size // 2)
            if _connects_exits(blended, center, exits):
                grid = blended
                logger.debug(f"[REGEN] Copied {copied} cells from generation {previous.generation}")
            else:
                logger.debug("[REGEN] Similarity pass cut off an exit, keeping fresh layout")

    return Maze(grid, exits=exits, generation=generation)


def validate_maze(maze):
    """Check the maze invariants and return the results as a dict"""
    reachable = reachable_cells(maze)
    reachable_boundary = [cell for cell in reachable if maze.is_boundary(*cell)]
    exits_open = all(
        maze.is_open(ex, ey) and maze.is_open(*inward_cell(ex, ey, maze.size))
        for ex, ey in maze.exits
    )
    center_open = all(maze.is_open(x, y) for x, y in center_region(maze.size))

    results = {
        'odd_size': maze.size % 2 == 1,
        'center_open': center_open,
        'exits_open': exits_open,
        'exit_count': len(maze.exits),
        'reachable_boundary_cells': len(reachable_boundary),
        'exits_reachable': all(cell in reachable for cell in maze.exits),
    }
    results['overall_valid'] = (
        results['odd_size'] and center_open and exits_open and
        results['exits_reachable'] and len(reachable_boundary) >= 2
    )
    return results
