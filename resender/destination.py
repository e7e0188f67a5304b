"""
Destination safety check for resent messages.

A message read from a dead message queue remembers where it was first
published. When it went straight to a queue (default exchange) that queue
name must match the resend target; when it came in through a routed exchange
the original queue cannot be known and the operator is trusted.
"""
import enum

DEFAULT_EXCHANGE = ''


class Decision(enum.Enum):
    UNVERIFIABLE = 'unverifiable'
    MATCH = 'match'
    REJECT = 'reject'
    FORCED_OVERRIDE = 'forced_override'

    @property
    def proceed(self):
        return self is not Decision.REJECT


def validate(original, target, forced):
    """Decide whether a message originally sent to `original` may go to `target`.

    Pure, case-sensitive comparison of queue names.
    """
    if original is None:
        return Decision.UNVERIFIABLE
    if original == target:
        return Decision.MATCH
    if forced:
        return Decision.FORCED_OVERRIDE
    return Decision.REJECT


def _text(value):
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value


def original_destination(method, properties):
    """Return the queue a delivery was originally published to, or None.

    Dead-lettered messages carry an `x-death` history whose first entry is the
    most recent death; its exchange and routing keys describe how the message
    was published before it was dead-lettered. Messages without that history
    are judged by the delivery itself. A malformed history means unknown.
    """
    headers = getattr(properties, 'headers', None) or {}
    deaths = headers.get('x-death')
    if deaths:
        if not isinstance(deaths, list) or not all(isinstance(d, dict) for d in deaths):
            return None
        death = deaths[0]
        if _text(death.get('exchange', DEFAULT_EXCHANGE)) != DEFAULT_EXCHANGE:
            return None
        routing_keys = death.get('routing-keys') or []
        if routing_keys:
            return _text(routing_keys[0])
        queue = death.get('queue')
        return _text(queue) if queue else None

    if method is None or method.exchange != DEFAULT_EXCHANGE:
        return None
    return method.routing_key or None
