class Player:
    def __init__(self, player_id, x=0.0, y=0.0):
        self.id = player_id
        self.x = x
        self.y = y

    def to_dict(self):
        """Convert player to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'x': self.x,
            'y': self.y
        }

    def __repr__(self):
        return f"<Player {self.id} ({self.x}, {self.y})>"
