import logging


class StateBroadcaster:
    """Pushes a snapshot to every connected session.

    ``send(connection, payload)`` is supplied by the transport. A send that
    raises only affects that one recipient: the error is logged and the loop
    moves on. Dropping a dead connection is left to its own session's
    disconnect path.

    Each session sees strictly increasing ticks. A snapshot older than the
    last one that session was sent is skipped, since the newer one already
    carries everything it had.
    """

    def __init__(self, send):
        self.logger = logging.getLogger(__name__)
        self.send = send
        self.sent = 0
        self.failed = 0
        self.stale = 0

    def publish(self, state, sessions):
        """Send ``state`` to each session; returns the connections that failed"""
        payload = state.to_dict()
        failed = []

        for session in sessions:
            with session.send_lock:
                if state.tick <= session.last_tick:
                    self.stale += 1
                    continue
                session.last_tick = state.tick
                try:
                    self.send(session.connection, payload)
                    self.sent += 1
                except Exception as e:
                    self.failed += 1
                    failed.append(session.connection)
                    self.logger.warning(f"[BROADCAST] Send to {session.connection} (player {session.player_id}) failed: {e}")

        self.logger.debug(f"[BROADCAST] tick {state.tick} to {len(sessions) - len(failed)}/{len(sessions)} sessions")
        return failed
