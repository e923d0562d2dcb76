import math

from .settings import CELL_SIZE, PLAYER_SIZE


def cell_index(coord, cell_size=CELL_SIZE):
    """Grid cell containing a pixel coordinate (negative pixels map below 0)"""
    return math.floor(coord / cell_size)


def cell_of(x, y, cell_size=CELL_SIZE):
    return cell_index(x, cell_size), cell_index(y, cell_size)


def cell_center(gx, gy, cell_size=CELL_SIZE):
    """Pixel coordinate of the middle of a cell"""
    return gx * cell_size + cell_size / 2, gy * cell_size + cell_size / 2


def bounding_corners(x, y, half_size=PLAYER_SIZE):
    return [
        (x - half_size, y - half_size),
        (x + half_size, y - half_size),
        (x - half_size, y + half_size),
        (x + half_size, y + half_size),
    ]


def can_occupy(maze, x, y, cell_size=CELL_SIZE, half_size=PLAYER_SIZE):
    """Check that no corner of the player's box sits inside a wall.

    Corners outside the grid are allowed so players can walk out through an
    exit instead of bumping into an invisible border.
    """
    for px, py in bounding_corners(x, y, half_size):
        gx, gy = cell_of(px, py, cell_size)
        if not maze.in_bounds(gx, gy):
            continue
        if maze.is_wall(gx, gy):
            return False
    return True


def clamp_position(maze, x, y, cell_size=CELL_SIZE):
    limit = maze.size * cell_size
    return max(0.0, min(x, limit)), max(0.0, min(y, limit))


def try_move(maze, player, dx, dy, cell_size=CELL_SIZE, half_size=PLAYER_SIZE):
    """Move a player with wall collision, one axis at a time.

    X is resolved first and Y is then tested against the updated X, so
    sliding along a wall still works when only one axis is blocked. The
    player is updated in place and the new position returned.
    """
    x, y = player.x, player.y

    if dx:
        nx = x + dx
        if can_occupy(maze, nx, y, cell_size, half_size):
            x = nx

    if dy:
        ny = y + dy
        if can_occupy(maze, x, ny, cell_size, half_size):
            y = ny

    player.x, player.y = clamp_position(maze, x, y, cell_size)
    return player.x, player.y


def is_exit(maze, player, cell_size=CELL_SIZE):
    """Player stands on an OPEN cell of the outer ring"""
    gx, gy = cell_of(player.x, player.y, cell_size)
    return maze.is_open(gx, gy) and maze.is_boundary(gx, gy)
