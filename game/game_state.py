class GameState:
    """Read-only snapshot of the world, taken under the world lock and sent
    after it is released."""

    def __init__(self, maze, players, tick):
        self.maze = maze  # Maze is immutable, safe to share between threads
        self.players = {player_id: dict(data) for player_id, data in players.items()}
        self.generation = maze.generation
        self.tick = tick

    def to_dict(self):
        """Wire format broadcast to every client"""
        return {
            'maze': self.maze.to_list(),
            'exits': [list(cell) for cell in self.maze.exits],
            'players': self.players,
            'generation': self.generation,
            'tick': self.tick
        }
