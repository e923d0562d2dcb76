import pytest

from game.maze import Maze
from game.settings import WALL, OPEN


def parse_rows(rows, exits=()):
    """'#' is a wall, anything else is open"""
    cells = [[WALL if ch == '#' else OPEN for ch in row] for row in rows]
    return Maze(cells, exits=exits)


@pytest.fixture
def build_maze():
    return parse_rows


@pytest.fixture
def corridor_21():
    """21x21 walls with one horizontal corridor through the center row (cells 5..14)"""
    rows = []
    for y in range(21):
        if y == 10:
            rows.append('#' * 5 + '.' * 10 + '#' * 6)
        elif y == 9:
            rows.append('#' * 9 + '..' + '#' * 10)
        else:
            rows.append('#' * 21)
    return parse_rows(rows)


@pytest.fixture
def exit_maze_11():
    """11x11 maze whose center row runs straight out of a right-hand exit at (10, 5)"""
    rows = []
    for y in range(11):
        if y == 5:
            rows.append('#' * 4 + '.' * 7)
        elif y == 4:
            rows.append('#' * 4 + '..' + '#' * 5)
        else:
            rows.append('#' * 11)
    return parse_rows(rows, exits=[(10, 5)])
