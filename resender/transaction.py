"""
TransactionController - the single commit or rollback that ends a batch
"""
import enum
import logging
import threading

import pika.exceptions

from resender.exceptions import CommitError, TransactionClosedError


class TransactionState(enum.Enum):
    ACTIVE = 'active'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled_back'
    ABORTED = 'aborted'


class Action(enum.Enum):
    COMMIT = 'commit'
    ROLLBACK = 'rollback'


def decide(nop_requested, all_sent):
    """Commit only when every send was staged and this is not a dry run"""
    if nop_requested or not all_sent:
        return Action.ROLLBACK
    return Action.COMMIT


class TransactionController:
    """Wraps a transactional context exposing commit() and rollback().

    `context` is anything with commit() and rollback(); for RabbitMQ that is
    the channel in tx mode. Each terminal call goes to the broker at most once.
    abort() may come from a broker callback, so state changes hold a lock.
    The lock is never held across a broker call.
    """

    def __init__(self, context):
        self.context = context
        self._state = TransactionState.ACTIVE
        self._lock = threading.Lock()
        self.logger = logging.getLogger('resender.transaction')

    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def is_open(self):
        return self.state in (TransactionState.ACTIVE, TransactionState.ABORTED)

    def abort(self):
        """Mark the transaction as aborted; only rollback() is allowed afterwards"""
        with self._lock:
            if self._state is TransactionState.ACTIVE:
                self._state = TransactionState.ABORTED

    def commit(self):
        with self._lock:
            if self._state is TransactionState.ABORTED:
                raise TransactionClosedError("Cannot commit: transaction was aborted")
            if self._state is not TransactionState.ACTIVE:
                raise TransactionClosedError(f"Cannot commit: transaction already {self._state.value}")
        try:
            self.context.commit()
        except pika.exceptions.AMQPError as e:
            # Outcome unknown; never retry, only a rollback may follow
            with self._lock:
                self._state = TransactionState.ABORTED
            raise CommitError(f"Commit rejected by broker: {e!r}") from e
        with self._lock:
            self._state = TransactionState.COMMITTED
        self.logger.debug("Transaction committed")

    def rollback(self):
        with self._lock:
            if self._state not in (TransactionState.ACTIVE, TransactionState.ABORTED):
                raise TransactionClosedError(f"Cannot rollback: transaction already {self._state.value}")
            # Terminal even if the broker call fails; closing the channel discards the transaction
            self._state = TransactionState.ROLLED_BACK
        self.context.rollback()
        self.logger.debug("Transaction rolled back")

    def rollback_if_open(self):
        """Roll back unless already terminal. Returns True if a rollback was sent"""
        if not self.is_open:
            return False
        self.rollback()
        return True

    def finish(self, nop_requested, all_sent):
        """Apply decide() and return the action taken"""
        action = decide(nop_requested, all_sent)
        if action is Action.COMMIT:
            self.commit()
        else:
            self.rollback()
        return action
