"""
RabbitMQ glue for the resender: connection, transactional channel,
exclusive consumer binding and transactional producer.

All four are owned by one BrokerResources instance and released in the
order binding, producer, transactional context, connection.
"""
import collections
import logging
import time

import pika
import pika.exceptions

from resender.destination import DEFAULT_EXCHANGE, original_destination
from resender.exceptions import BindError, PublishError
from resender.flow_monitor import FlowState
from resender.messages import ReceivedMessage

logger = logging.getLogger('resender.broker')

# prefetch_count is an AMQP short; 0 means unlimited
MAX_PREFETCH = 65535


class BrokerConnection:
    """Builds pika connection parameters from settings and connects"""

    def __init__(self, settings):
        self.settings = settings

    def connection_parameters(self):
        s = self.settings
        if '://' in s.url:
            params = pika.URLParameters(s.url)
            # Credentials embedded in the URL win over configured ones
            if '@' not in s.url:
                params.credentials = pika.PlainCredentials(s.username, s.password)
            params.connection_attempts = s.connection_attempts
            params.retry_delay = s.retry_delay
            return params

        host, _, port = s.url.partition(':')
        return pika.ConnectionParameters(
            host=host,
            port=int(port) if port else pika.ConnectionParameters.DEFAULT_PORT,
            virtual_host=s.vhost,
            credentials=pika.PlainCredentials(s.username, s.password),
            connection_attempts=s.connection_attempts,
            retry_delay=s.retry_delay,
        )

    def connect(self):
        logger.info(f"Creating transacted session to broker: {self.settings.url}")
        try:
            return pika.BlockingConnection(self.connection_parameters())
        except pika.exceptions.AMQPError as e:
            raise BindError(f"Failed to connect to broker {self.settings.url}: {e!r}") from e


class TransactionalContext:
    """A channel in tx mode; sends and acks on it take effect at commit"""

    def __init__(self, channel):
        self.channel = channel

    def begin(self):
        self.channel.tx_select()

    def commit(self):
        self.channel.tx_commit()

    def rollback(self):
        self.channel.tx_rollback()

    def close(self):
        # Closing with a transaction still open discards it and requeues unacked deliveries
        if self.channel.is_open:
            self.channel.close()


class ConsumerBinding:
    """Exclusive consumer on the source queue with a local delivery buffer"""

    def __init__(self, connection, channel, queue_name, monitor, prefetch):
        self.connection = connection
        self.channel = channel
        self.queue_name = queue_name
        self.monitor = monitor
        self.prefetch = prefetch
        self.consumer_tag = None
        self._buffer = collections.deque()

    def bind(self):
        logger.info(f"Binding to from queue: {self.queue_name}")
        self.channel.basic_qos(prefetch_count=self.prefetch if self.prefetch <= MAX_PREFETCH else 0)
        self.channel.add_on_cancel_callback(self._on_cancel)
        try:
            self.consumer_tag = self.channel.basic_consume(
                queue=self.queue_name,
                on_message_callback=self._on_message,
                auto_ack=False,
                exclusive=True,
            )
        except pika.exceptions.ChannelClosedByBroker as e:
            raise BindError(f"Exclusive bind to queue {self.queue_name} refused: {e.reply_text}") from e
        self.monitor.handle_event(FlowState.ACTIVE)

    def _on_message(self, channel, method, properties, body):
        self._buffer.append(ReceivedMessage(
            body=body,
            properties=properties,
            delivery_tag=method.delivery_tag,
            original_destination=original_destination(method, properties),
            redelivered=method.redelivered,
        ))

    def _on_cancel(self, method_frame):
        self.consumer_tag = None
        self.monitor.handle_event(FlowState.CANCELLED)

    def receive(self, timeout):
        """Return the next buffered delivery, waiting at most `timeout` seconds, or None"""
        deadline = time.monotonic() + timeout
        while not self._buffer:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or self.monitor.aborted:
                break
            self.connection.process_data_events(time_limit=remaining)
        if self._buffer:
            return self._buffer.popleft()
        return None

    def acknowledge(self, message):
        self.channel.basic_ack(delivery_tag=message.delivery_tag)

    def close(self):
        if self.consumer_tag and self.channel.is_open:
            self.channel.basic_cancel(self.consumer_tag)
        self.consumer_tag = None
        self._buffer.clear()


class TransactionalProducer:
    """Publishes resend messages on the transactional channel"""

    def __init__(self, channel, monitor):
        self.channel = channel
        self.monitor = monitor
        self.closed = False
        self.returned = 0
        self.channel.add_on_return_callback(self._on_return)

    def send(self, message):
        if self.closed:
            raise PublishError("Producer is closed")
        try:
            self.channel.basic_publish(
                exchange=DEFAULT_EXCHANGE,
                routing_key=message.target,
                body=message.body,
                properties=message.properties,
                mandatory=True,
            )
        except pika.exceptions.AMQPError as e:
            raise PublishError(f"Failed to stage message for {message.target}: {e!r}") from e

    def _on_return(self, channel, method, properties, body):
        # An unroutable mandatory publish was dropped by the broker
        self.returned += 1
        logger.error(f"Message for {method.routing_key} returned by broker: {method.reply_text}")
        self.monitor.handle_event(FlowState.RETURNED)

    def close(self):
        self.closed = True


class BrokerResources:
    """Connection, transactional context, binding and producer for one run"""

    def __init__(self, settings, monitor):
        self.settings = settings
        self.monitor = monitor
        self.connection = None
        self.context = None
        self.binding = None
        self.producer = None

    def open(self):
        s = self.settings
        self.connection = BrokerConnection(s).connect()
        self.connection.add_on_connection_blocked_callback(
            lambda connection, frame: self.monitor.handle_event(FlowState.BLOCKED))
        self.connection.add_on_connection_unblocked_callback(
            lambda connection, frame: self.monitor.handle_event(FlowState.ACTIVE))

        channel = self.connection.channel()
        try:
            channel.queue_declare(queue=s.to_queue, passive=True)
        except pika.exceptions.ChannelClosedByBroker as e:
            raise BindError(f"Re-send queue {s.to_queue} does not exist: {e.reply_text}") from e

        self.context = TransactionalContext(channel)
        self.context.begin()
        self.binding = ConsumerBinding(self.connection, channel, s.from_queue, self.monitor, s.count)
        self.binding.bind()
        self.producer = TransactionalProducer(channel, self.monitor)
        return self

    def drain_events(self):
        """Dispatch callbacks for frames that arrived with the last blocking call"""
        if self.connection is not None and self.connection.is_open:
            self.connection.process_data_events(time_limit=0)

    def close(self):
        for name in ('binding', 'producer', 'context'):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                resource.close()
            except pika.exceptions.AMQPError as e:
                logger.warning(f"Failed to close {name}: {e!r}")
            setattr(self, name, None)

        if self.connection is not None:
            try:
                if self.connection.is_open:
                    self.connection.close()
            except pika.exceptions.AMQPError as e:
                logger.warning(f"Failed to close connection: {e!r}")
            self.connection = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
