"""
FlowStateMonitor - watches the source queue consumer binding.

The broker client delivers state changes through callbacks that are not
driven by the resend loop. The monitor never touches the transaction; it
sets an abort flag that the engine checks between operations.
"""
import enum
import logging
import threading


class FlowState(enum.Enum):
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    BLOCKED = 'blocked'
    RETURNED = 'returned'


class FlowStateMonitor:
    """Turns binding state notifications into an abort signal"""

    def __init__(self, queue_name, on_abort=None):
        self.queue_name = queue_name
        self.on_abort = on_abort
        self.logger = logging.getLogger('resender.flow_monitor')
        self._abort = threading.Event()
        self._lock = threading.Lock()
        self._abort_state = None

    @property
    def aborted(self):
        return self._abort.is_set()

    @property
    def abort_state(self):
        with self._lock:
            return self._abort_state

    def handle_event(self, state):
        """Called by the broker glue for every flow notification"""
        self.logger.info(f"Flow event for queue {self.queue_name}: {state.value}")
        if state is FlowState.ACTIVE:
            return

        with self._lock:
            first = not self._abort.is_set()
            if first:
                self._abort_state = state
                self._abort.set()

        if first:
            self.logger.error(f"Unexpected flow event for queue: {self.queue_name}, rolling back transaction")
            if self.on_abort:
                self.on_abort(state)

    def wait(self, timeout=None):
        """Block until an abort is signalled or `timeout` seconds pass"""
        return self._abort.wait(timeout)
