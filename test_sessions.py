"""
Session and world tests - connect/move/disconnect lifecycle, global
regeneration when anyone reaches an exit, broadcast isolation and ordering
under concurrent sessions.
"""

import random
import threading
import time
from collections import defaultdict

import pytest

from game.maze import Maze, MazeGenerationError, generate_maze
from game.session import SessionManager, ACTIVE, CLOSED
from game.settings import WALL
from game.world import World


class FakeTransport:
    """Records every payload per connection; connections in ``broken`` raise on send"""

    def __init__(self):
        self.received = defaultdict(list)
        self.sent_order = []
        self.welcomed = {}
        self.broken = set()

    def send(self, connection, payload):
        if connection in self.broken:
            raise ConnectionError(f"{connection} is gone")
        self.received[connection].append(payload)
        self.sent_order.append((connection, payload))

    def greet(self, connection, session):
        self.welcomed[connection] = session.player_id

    def last(self, connection):
        return self.received[connection][-1]


def make_manager(world):
    transport = FakeTransport()
    return SessionManager(world, transport.send, greet=transport.greet), transport


def test_connect_activates_and_broadcasts(corridor_21):
    manager, transport = make_manager(World(maze=corridor_21, cell_size=24))

    a = manager.on_connect('A')
    assert a.state == ACTIVE
    assert transport.welcomed['A'] == a.player_id
    assert set(transport.last('A')['players']) == {a.player_id}

    b = manager.on_connect('B')
    for connection in ('A', 'B'):
        state = transport.last(connection)
        assert set(state['players']) == {a.player_id, b.player_id}
        assert state['players'][b.player_id] == {'id': b.player_id, 'x': 252, 'y': 252}


def test_duplicate_connection_rejected(corridor_21):
    manager, _ = make_manager(World(maze=corridor_21, cell_size=24))
    manager.on_connect('A')
    with pytest.raises(ValueError):
        manager.on_connect('A')


def test_walk_right_until_blocked(corridor_21):
    manager, transport = make_manager(World(maze=corridor_21, cell_size=24))
    session = manager.on_connect('A')
    assert transport.last('A')['players'][session.player_id] == {'id': session.player_id, 'x': 252, 'y': 252}

    position = None
    for _ in range(100):
        state = manager.on_message('A', {'dx': 2, 'dy': 0})
        player = state.players[session.player_id]
        if (player['x'], player['y']) == position:
            break
        position = (player['x'], player['y'])

    x, y = position
    # right edge of the box (x + 6) sits just short of wall cell 15 at 360px
    assert x == 352 and y == 252
    assert corridor_21.is_open(int(x // 24), int(y // 24))
    assert corridor_21.is_wall(int(x // 24) + 1, int(y // 24))


def test_discrete_direction_messages(corridor_21):
    manager, _ = make_manager(World(maze=corridor_21, cell_size=24))
    session = manager.on_connect('A')
    state = manager.on_message('A', {'direction': 'left'})
    assert state.players[session.player_id]['x'] == 250


def test_malformed_message_is_a_no_op(corridor_21):
    manager, transport = make_manager(World(maze=corridor_21, cell_size=24))
    session = manager.on_connect('A')
    before = transport.last('A')

    state = manager.on_message('A', 'garbage')
    assert session.active
    assert state.players[session.player_id] == before['players'][session.player_id]
    assert transport.last('A')['tick'] == before['tick'] + 1


def test_exit_regenerates_for_everyone(exit_maze_11):
    world = World(maze=exit_maze_11, rng=random.Random(5))
    manager, transport = make_manager(world)
    a = manager.on_connect('A')
    b = manager.on_connect('B')
    center = world.center_pixel

    messages = 0
    while transport.last('B')['generation'] == 1:
        manager.on_message('A', {'dx': 8, 'dy': 0})
        messages += 1
        assert messages <= 20

    # 110 + 8 * 12 = 206 is the first position inside exit cell (10, 5)
    assert messages == 12
    for connection in ('A', 'B'):
        state = transport.last(connection)
        assert state['generation'] == 2
        assert state['maze'] != [list(row) for row in exit_maze_11.cells]
        for player_id in (a.player_id, b.player_id):
            assert (state['players'][player_id]['x'], state['players'][player_id]['y']) == (center, center)

    # nothing before the trigger showed the new maze
    for connection in ('A', 'B'):
        assert [s['generation'] for s in transport.received[connection]].count(2) == 1


def test_regenerated_maze_is_playable(exit_maze_11):
    world = World(maze=exit_maze_11, rng=random.Random(6))
    manager, _ = make_manager(world)
    manager.on_connect('A')
    for _ in range(12):
        manager.on_message('A', {'dx': 8, 'dy': 0})
    assert world.maze.generation == 2
    assert world.maze.size == 11
    assert len(world.maze.exits) == 2


def test_broken_connection_does_not_block_others(corridor_21):
    manager, transport = make_manager(World(maze=corridor_21, cell_size=24))
    manager.on_connect('A')
    manager.on_connect('B')
    c = manager.on_connect('C')

    transport.broken.add('C')
    state = manager.on_message('A', {'dx': 2, 'dy': 0})
    assert transport.last('A')['tick'] == state.tick
    assert transport.last('B')['tick'] == state.tick
    assert manager.broadcaster.failed == 1
    # the broadcaster does not drop the session on its own
    assert manager.get('C').active

    manager.on_disconnect('C')
    assert c.state == CLOSED
    for connection in ('A', 'B'):
        assert c.player_id not in transport.last(connection)['players']

    manager.on_message('B', {'dx': -2, 'dy': 0})
    for connection in ('A', 'B'):
        assert c.player_id not in transport.last(connection)['players']
        assert len(transport.last(connection)['players']) == 2


def test_messages_after_disconnect_are_ignored(corridor_21):
    manager, transport = make_manager(World(maze=corridor_21, cell_size=24))
    manager.on_connect('A')
    manager.on_disconnect('A')
    sent = len(transport.sent_order)

    assert manager.on_message('A', {'dx': 2}) is None
    assert manager.on_disconnect('A') is None
    assert manager.on_message('nobody', {'dx': 2}) is None
    assert len(transport.sent_order) == sent
    assert len(manager) == 0
    assert len(manager.world.registry) == 0


def test_world_retries_unplayable_mazes():
    calls = []

    def flaky_generator(previous, **kwargs):
        calls.append(previous)
        if len(calls) == 1:
            return Maze([[WALL] * kwargs['grid_size'] for _ in range(kwargs['grid_size'])])
        return generate_maze(previous, **kwargs)

    world = World(grid_size=11, generator=flaky_generator, rng=random.Random(1))
    assert len(calls) == 2
    assert world.maze.generation == 1


def test_world_gives_up_after_max_attempts():
    def walled(previous, grid_size, **kwargs):
        return Maze([[WALL] * grid_size for _ in range(grid_size)])

    with pytest.raises(MazeGenerationError):
        World(grid_size=11, generator=walled, max_attempts=3)


def test_connect_regenerates_unplayable_maze():
    walled = Maze([[WALL] * 11 for _ in range(11)])
    world = World(maze=walled, rng=random.Random(2))
    player_id, state = world.connect()
    assert state.generation == 2
    assert player_id in state.players


@pytest.mark.parametrize('kwargs', [
    {'grid_size': 20},
    {'grid_size': 5},
    {'cell_size': 10, 'player_size': 6},
    {'max_step': 20},
    {'max_attempts': 0},
])
def test_world_validates_settings(kwargs):
    with pytest.raises(ValueError):
        World(**kwargs)


def test_concurrent_sessions_publish_consistent_snapshots():
    world = World(grid_size=11, rng=random.Random(42))
    manager, transport = make_manager(world)
    connections = [f'conn{i}' for i in range(8)]
    for connection in connections:
        manager.on_connect(connection)

    results = []

    def play(connection, seed):
        rng = random.Random(seed)
        for _ in range(150):
            if rng.random() < 0.5:
                state = manager.on_message(connection, {'dx': rng.uniform(-8, 8), 'dy': rng.uniform(-8, 8)})
            else:
                state = manager.on_message(connection, {'direction': rng.choice(['up', 'down', 'left', 'right'])})
            results.append(state)

    threads = [threading.Thread(target=play, args=(c, i)) for i, c in enumerate(connections)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # each connection sees strictly newer snapshots, never an older one late
    for connection in connections:
        received = transport.received[connection]
        ticks = [state['tick'] for state in received]
        assert ticks == sorted(ticks)
        assert len(set(ticks)) == len(ticks)
        generations = [state['generation'] for state in received]
        assert generations == sorted(generations)
        assert received[-1]['tick'] == world.tick

    # the snapshot that opened each new maze shows everyone back at the center
    center = world.center_pixel
    first_of_generation = {}
    for state in results:
        known = first_of_generation.get(state.generation)
        if known is None or state.tick < known.tick:
            first_of_generation[state.generation] = state
    for generation, state in first_of_generation.items():
        if generation > 1:
            assert all((p['x'], p['y']) == (center, center) for p in state.players.values())


def test_blocked_send_does_not_hold_the_world_lock(corridor_21):
    world = World(maze=corridor_21, cell_size=24)
    release = threading.Event()
    sending = threading.Event()
    blocking = {'A': False}
    transport = FakeTransport()

    def send(connection, payload):
        if blocking.get(connection):
            sending.set()
            release.wait(5)
        transport.send(connection, payload)

    manager = SessionManager(world, send)
    manager.on_connect('A')
    manager.on_connect('B')
    blocking['A'] = True

    first = threading.Thread(target=manager.on_message, args=('A', {'dx': 2, 'dy': 0}))
    second = threading.Thread(target=manager.on_message, args=('B', {'dx': -2, 'dy': 0}))
    first.start()
    assert sending.wait(5)
    second.start()

    try:
        # B's move completes in the world even though its broadcast waits behind A
        deadline = time.time() + 5
        while world.snapshot().tick < 4 and time.time() < deadline:
            time.sleep(0.01)
        assert world.lock.acquire(timeout=1)
        world.lock.release()
        assert world.snapshot().tick == 4
        _, state = world.connect()
        assert state.tick == 5
    finally:
        release.set()
        first.join(5)
        second.join(5)

    assert not first.is_alive() and not second.is_alive()
    ticks = [state['tick'] for state in transport.received['A']]
    assert ticks == sorted(ticks)
