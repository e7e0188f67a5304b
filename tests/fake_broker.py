"""In-memory transactional broker used by the engine tests.

Mirrors the AMQP tx semantics the resender relies on: deliveries stay unacked
until commit, sends are staged until commit, rollback discards both, and
closing the channel requeues whatever is still unacked.
"""

from collections import defaultdict, deque

import pika
import pika.exceptions

from resender.exceptions import BindError, PublishError
from resender.flow_monitor import FlowState
from resender.messages import ReceivedMessage


class FakeBroker:
    def __init__(self):
        self.queues = defaultdict(deque)
        self.unacked = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = []
        self.next_tag = 1
        self.bind_refused = False
        self.open_error = None
        self.fail_commit = False
        self.fail_publish_at = None
        self.abort_on_receive = None
        self.abort_during_commit = False
        self.return_during_commit = False
        self.return_before_commit = False
        self.receive_error_at = None
        self.producer = None
        self.monitor = None
        self.publishes = 0
        self.receives = 0

    def put(self, queue, body, original_destination=None):
        self.queues[queue].append((body, original_destination))

    def bodies(self, queue):
        return [body for body, _ in self.queues[queue]]


class FakeContext:
    def __init__(self, broker):
        self.broker = broker
        self.staged_sends = []
        self.staged_acks = []

    def commit(self):
        if self.broker.abort_during_commit:
            self.broker.monitor.handle_event(FlowState.CANCELLED)
        if self.broker.fail_commit:
            raise pika.exceptions.ConnectionClosed(320, 'CONNECTION_FORCED')
        self.broker.commits += 1
        if self.broker.return_during_commit:
            # Unroutable publishes are dropped, the acks still commit
            for message in self.staged_sends:
                self.broker.producer.bounce(message)
            self.staged_sends = []
        for message in self.staged_sends:
            self.broker.queues[message.target].append((message.body, message.target))
        for tag in self.staged_acks:
            self.broker.unacked = [m for m in self.broker.unacked if m[0] != tag]
        self.staged_sends = []
        self.staged_acks = []

    def rollback(self):
        self.broker.rollbacks += 1
        self.staged_sends = []
        self.staged_acks = []

    def close(self):
        self.broker.closed.append('context')


class FakeBinding:
    def __init__(self, broker, context, queue_name):
        self.broker = broker
        self.context = context
        self.queue_name = queue_name

    def receive(self, timeout):
        self.broker.receives += 1
        if self.broker.abort_on_receive == self.broker.receives:
            self.broker.monitor.handle_event(FlowState.CANCELLED)
        if self.broker.receive_error_at == self.broker.receives:
            raise AttributeError("'str' object has no attribute 'get'")
        queue = self.broker.queues[self.queue_name]
        if not queue:
            return None
        body, original = queue.popleft()
        tag = self.broker.next_tag
        self.broker.next_tag += 1
        self.broker.unacked.append((tag, self.queue_name, body, original))
        return ReceivedMessage(
            body=body,
            properties=pika.BasicProperties(headers={}),
            delivery_tag=tag,
            original_destination=original,
        )

    def acknowledge(self, message):
        self.context.staged_acks.append(message.delivery_tag)

    def close(self):
        self.broker.closed.append('binding')


class FakeProducer:
    def __init__(self, broker, context):
        self.broker = broker
        self.context = context
        self.sent = []
        self.returned = 0

    def bounce(self, message):
        self.returned += 1
        self.broker.monitor.handle_event(FlowState.RETURNED)

    def send(self, message):
        self.broker.publishes += 1
        if self.broker.fail_publish_at == self.broker.publishes:
            raise PublishError(f"Failed to stage message for {message.target}")
        self.context.staged_sends.append(message)
        self.sent.append(message)

    def close(self):
        self.broker.closed.append('producer')


class FakeResources:
    def __init__(self, broker, settings, monitor):
        self.broker = broker
        self.settings = settings
        self.monitor = monitor
        self.context = None
        self.binding = None
        self.producer = None
        broker.monitor = monitor

    def open(self):
        if self.broker.open_error:
            raise self.broker.open_error
        if self.broker.bind_refused:
            raise BindError(f"Exclusive bind to queue {self.settings.from_queue} refused")
        self.context = FakeContext(self.broker)
        self.binding = FakeBinding(self.broker, self.context, self.settings.from_queue)
        self.producer = FakeProducer(self.broker, self.context)
        self.broker.producer = self.producer
        self.monitor.handle_event(FlowState.ACTIVE)
        return self

    def drain_events(self):
        if self.broker.return_before_commit and self.context.staged_sends:
            self.producer.bounce(self.context.staged_sends[-1])

    def close(self):
        for resource in (self.binding, self.producer, self.context):
            if resource is not None:
                resource.close()
        self.broker.closed.append('connection')
        # Channel close requeues unacked deliveries in their original order
        for tag, queue, body, original in reversed(self.broker.unacked):
            self.broker.queues[queue].appendleft((body, original))
        self.broker.unacked = []


def resources_factory(broker):
    return lambda settings, monitor: FakeResources(broker, settings, monitor)
