import json
import math
import logging
from collections import namedtuple

from .settings import PLAYER_SPEED, MAX_STEP

logger = logging.getLogger(__name__)

MovementIntent = namedtuple('MovementIntent', ['dx', 'dy'])

ZERO_INTENT = MovementIntent(0.0, 0.0)

DIRECTIONS = {
    'up': (0, -1),
    'down': (0, 1),
    'left': (-1, 0),
    'right': (1, 0),
}


def _bounded(value, max_step):
    # bool is an int subclass, but {"dx": true} is not a distance
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"not a number: {value!r}")
    try:
        value = float(value)
    except OverflowError:
        raise ValueError(f"too large: {value!r:.40}")
    if not math.isfinite(value):
        raise ValueError(f"not finite: {value!r}")
    return max(-max_step, min(value, max_step))


def decode_intent(raw, speed=PLAYER_SPEED, max_step=MAX_STEP):
    """Turn a raw client payload into a MovementIntent.

    Accepts ``{"dx": .., "dy": ..}`` or ``{"direction": "up"|"down"|"left"|"right"}``,
    either as a dict or as a JSON string. Anything unusable becomes the zero
    intent so a bad message never ends the session.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug(f"[INTENT] Ignoring non-JSON payload: {raw!r}")
            return ZERO_INTENT

    if not isinstance(raw, dict):
        logger.debug(f"[INTENT] Ignoring payload of type {type(raw).__name__}")
        return ZERO_INTENT

    if 'direction' in raw:
        direction = raw['direction']
        if not isinstance(direction, str) or direction.lower() not in DIRECTIONS:
            logger.debug(f"[INTENT] Unknown direction {direction!r}")
            return ZERO_INTENT
        ux, uy = DIRECTIONS[direction.lower()]
        step = min(speed, max_step)
        return MovementIntent(float(ux * step), float(uy * step))

    try:
        return MovementIntent(
            _bounded(raw.get('dx', 0), max_step),
            _bounded(raw.get('dy', 0), max_step)
        )
    except ValueError as e:
        logger.debug(f"[INTENT] Malformed delta: {e}")
        return ZERO_INTENT
