import logging
import threading

from .broadcaster import StateBroadcaster
from .intent import decode_intent

CONNECTED = 'connected'
ACTIVE = 'active'
CLOSED = 'closed'


class Session:
    """Server-side lifecycle of one connection: connected -> active -> closed"""

    def __init__(self, connection):
        self.connection = connection
        self.player_id = None
        self.state = CONNECTED
        self.messages = 0
        # Serializes sends to this connection; last_tick is only read or written under it
        self.send_lock = threading.Lock()
        self.last_tick = -1

    @property
    def active(self):
        return self.state == ACTIVE

    def activate(self, player_id):
        if self.state != CONNECTED:
            raise RuntimeError(f"Cannot activate a session that is {self.state}")
        self.player_id = player_id
        self.state = ACTIVE

    def close(self):
        self.state = CLOSED

    def __repr__(self):
        return f"<Session {self.connection} player={self.player_id} {self.state}>"


class SessionManager:
    """Entry points for the transport layer.

    ``on_connect``, ``on_message`` and ``on_disconnect`` drive the world and
    publish the resulting snapshot to every active session through ``send``.
    ``greet(connection, session)``, if given, is called once a new session is
    active and before its first snapshot goes out.
    """

    def __init__(self, world, send, greet=None):
        self.logger = logging.getLogger(__name__)
        self.world = world
        self.broadcaster = StateBroadcaster(send)
        self.greet = greet
        self.sessions = {}
        self._sessions_lock = threading.Lock()

    def get(self, connection):
        with self._sessions_lock:
            return self.sessions.get(connection)

    def active_sessions(self):
        with self._sessions_lock:
            return [session for session in self.sessions.values() if session.active]

    def __len__(self):
        with self._sessions_lock:
            return len(self.sessions)

    def _publish(self, state):
        return self.broadcaster.publish(state, self.active_sessions())

    def on_connect(self, connection):
        """Register a player for a new connection and broadcast the new state"""
        session = Session(connection)
        with self._sessions_lock:
            if connection in self.sessions:
                raise ValueError(f"Connection {connection} already has a session")

        player_id, state = self.world.connect()
        session.activate(player_id)
        # Greet before the session is visible, so no snapshot can beat the welcome
        if self.greet is not None:
            try:
                self.greet(connection, session)
            except Exception:
                session.close()
                self.world.disconnect(player_id)
                raise
        with self._sessions_lock:
            self.sessions[connection] = session
        self._publish(state)

        self.logger.info(f"[SESSION] {connection} active as player {player_id}")
        return session

    def on_message(self, connection, raw_intent):
        """Apply one movement message; returns the resulting state or None"""
        session = self.get(connection)
        if session is None or not session.active:
            self.logger.debug(f"[SESSION] Dropping message from inactive connection {connection}")
            return None

        intent = decode_intent(raw_intent, max_step=self.world.max_step)
        state, regenerated = self.world.apply_intent(session.player_id, intent)
        if state is not None:
            self._publish(state)

        session.messages += 1
        if regenerated:
            self.logger.info(f"[SESSION] Message from {session.player_id} triggered maze #{state.generation}")
        return state

    def on_disconnect(self, connection):
        """Close the session, drop its player and tell everyone else"""
        with self._sessions_lock:
            session = self.sessions.pop(connection, None)
        if session is None:
            return None

        session.close()
        state = self.world.disconnect(session.player_id)
        if state is not None:
            self._publish(state)

        self.logger.info(f"[SESSION] {connection} closed after {session.messages} messages")
        return state
