import os

# Maze dimensions (cells are CELL_SIZE pixels square)
GRID_SIZE = 41  # must be odd
CELL_SIZE = 20

# Player bounding box half-size and movement
PLAYER_SIZE = 6
PLAYER_SPEED = 2  # pixels per discrete direction step
MAX_STEP = 8  # largest accepted per-axis delta for one message

# Generation tuning
LOOP_CHANCE = 0.25  # chance to punch an extra opening at each pillar
SIMILARITY = 0.08  # fraction of cells copied from the previous maze
EXIT_COUNT = 2
MAX_GENERATION_ATTEMPTS = 5

WALL = 1
OPEN = 0

# Server
HOST = os.environ.get('MAZE_HOST', '0.0.0.0')
PORT = int(os.environ.get('MAZE_PORT', '5000'))
SECRET_KEY = os.environ.get('MAZE_SECRET_KEY', 'mmo_maze_secret_key')
