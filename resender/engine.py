"""
ResendEngine - drains a batch from the source queue into the target queue
inside one broker transaction.

Either every message read is removed from the source and staged on the
target and the transaction commits, or the transaction is rolled back and
the source queue keeps all of them.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pika.exceptions

from resender.broker import BrokerResources
from resender.destination import Decision, validate
from resender.exceptions import (
    CommitError,
    DestinationMismatch,
    FlowAborted,
    ReceiveShortfall,
    ResendError,
    TransactionClosedError,
)
from resender.flow_monitor import FlowStateMonitor
from resender.messages import build_resend_message, dump_message
from resender.transaction import Action, TransactionController


class Outcome(enum.Enum):
    COMMITTED = 0
    ROLLED_BACK = 1
    UNCONFIRMED = 2
    DRY_RUN = 3
    BIND_FAILED = 4

    @property
    def exit_code(self):
        return self.value


@dataclass
class ResendResult:
    """Terminal result of one run"""
    outcome: Outcome
    received: int = 0
    sent: int = 0
    warnings: List[str] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def succeeded(self):
        return self.outcome in (Outcome.COMMITTED, Outcome.DRY_RUN)


class ResendEngine:
    """Runs a single supervised resend batch; never retries"""

    def __init__(self, settings, resources_factory=BrokerResources):
        self.settings = settings
        self.resources_factory = resources_factory
        self.logger = logging.getLogger('resender.engine')

    def run(self) -> ResendResult:
        s = self.settings
        monitor = FlowStateMonitor(s.from_queue)
        resources = self.resources_factory(s, monitor)
        result = ResendResult(Outcome.ROLLED_BACK)

        try:
            resources.open()
        except Exception as e:
            self.logger.error(f"Bind failed: {e!r}, nothing to roll back")
            resources.close()
            result.outcome = Outcome.BIND_FAILED
            result.error = e
            return result

        transaction = TransactionController(resources.context)
        monitor.on_abort = lambda state: transaction.abort()

        try:
            # Abort may have fired between bind and here
            if monitor.aborted:
                transaction.abort()
            self._resend_batch(resources, monitor, result)
            result.outcome = self._finish(resources, transaction, monitor, result)
            self.logger.info("Operation successfully completed.")
        except CommitError as e:
            self.logger.error(f"{e}; transaction outcome UNCONFIRMED, verify queues {s.from_queue} and {s.to_queue} manually")
            self._force_rollback(transaction)
            result.outcome = Outcome.UNCONFIRMED
            result.error = e
            self.logger.info("Operation failed.")
        except (ResendError, pika.exceptions.AMQPError) as e:
            self.logger.error(f"{e!r}, rolling back transaction")
            self._force_rollback(transaction)
            result.outcome = Outcome.ROLLED_BACK
            result.error = e
            self.logger.info("Operation failed.")
        except KeyboardInterrupt:
            self.logger.error("Interrupted, rolling back transaction")
            self._force_rollback(transaction)
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected error {e!r}, rolling back transaction")
            self._force_rollback(transaction)
            result.outcome = Outcome.ROLLED_BACK
            result.error = e
            self.logger.info("Operation failed.")
        finally:
            resources.close()

        return result

    def _check_abort(self, monitor):
        if monitor.aborted:
            raise FlowAborted(monitor.abort_state.value)

    def _resend_batch(self, resources, monitor, result):
        s = self.settings
        for i in range(s.count):
            self._check_abort(monitor)
            self.logger.info(f"Reading message {i + 1} from queue: {s.from_queue}")
            message = resources.binding.receive(s.receive_timeout)
            if message is None:
                self._check_abort(monitor)
                raise ReceiveShortfall(result.received, s.count)
            result.received += 1

            decision = validate(message.original_destination, s.to_queue, s.force)
            if decision is Decision.REJECT:
                self.logger.error(f"Original queue: {message.original_destination} differs to re-send queue: "
                                  f"{s.to_queue} (use --force option to override)")
                raise DestinationMismatch(message.original_destination, s.to_queue)
            if decision is Decision.FORCED_OVERRIDE:
                warning = (f"Original queue: {message.original_destination} differs to re-send queue: "
                           f"{s.to_queue} forcing send to specified re-send queue")
                self.logger.warning(warning)
                result.warnings.append(warning)
            elif decision is Decision.UNVERIFIABLE:
                self.logger.debug(f"Message {i + 1} was routed through an exchange, original queue unknown")

            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(f"Message dump:\n{dump_message(message)}")

            self._check_abort(monitor)
            self.logger.info(f"Sending message {i + 1} to queue: {s.to_queue}")
            resend = build_resend_message(message, s.to_queue, s.msg_ttl, s.msg_dmq)
            resources.producer.send(resend)
            resources.binding.acknowledge(message)
            result.sent += 1

    def _finish(self, resources, transaction, monitor, result):
        s = self.settings
        # Returned publishes surface as flow events
        resources.drain_events()
        self._check_abort(monitor)
        if s.nop:
            self.logger.info(f"Resent {result.sent} messages, NOP specified, rolling back transaction..")
        else:
            self.logger.info(f"Resent {result.sent} messages, committing transaction..")

        try:
            action = transaction.finish(s.nop, result.sent == s.count)
        except TransactionClosedError:
            # Abort landed between the check above and the commit
            raise FlowAborted(monitor.abort_state.value)

        if action is Action.ROLLBACK:
            return Outcome.DRY_RUN if s.nop else Outcome.ROLLED_BACK

        try:
            resources.drain_events()
        except pika.exceptions.AMQPError as e:
            self.logger.warning(f"Failed to collect broker events after commit: {e!r}")
        if resources.producer.returned:
            raise CommitError(f"Broker returned {resources.producer.returned} messages for {s.to_queue} during commit, "
                              f"their acks on {s.from_queue} were committed")
        if monitor.aborted:
            self.logger.warning(f"Source binding lost after commit completed (state: {monitor.abort_state.value}), "
                                f"verify queue {s.from_queue}")
        return Outcome.COMMITTED

    def _force_rollback(self, transaction):
        try:
            if transaction.rollback_if_open():
                self.logger.info("Transaction rolled back")
        except pika.exceptions.AMQPError as e:
            # Channel close discards the transaction anyway
            self.logger.warning(f"Rollback failed: {e!r}")
