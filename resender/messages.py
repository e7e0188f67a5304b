"""
Received and resend message types
"""
from dataclasses import dataclass
from typing import Optional

import pika

PERSISTENT = 2
DMQ_ELIGIBLE_HEADER = 'x-dmq-eligible'
DUMP_BODY_LIMIT = 512


@dataclass(frozen=True)
class ReceivedMessage:
    """A delivery taken from the source queue"""
    body: bytes
    properties: pika.BasicProperties
    delivery_tag: int
    original_destination: Optional[str] = None
    redelivered: bool = False


@dataclass
class ResendMessage:
    """Clone of a received message addressed to the target queue"""
    body: bytes
    properties: pika.BasicProperties
    target: str

    @property
    def time_to_live(self) -> int:
        return int(self.properties.expiration or 0)

    @property
    def dmq_eligible(self) -> bool:
        return bool((self.properties.headers or {}).get(DMQ_ELIGIBLE_HEADER, False))


def build_resend_message(received: ReceivedMessage, target: str, ttl_ms: int, dmq_eligible: bool) -> ResendMessage:
    """Clone `received` for `target` with persistence, TTL and DMQ eligibility overridden.

    The original timestamp and ids are kept. `user_id` is dropped since the
    broker rejects a publish whose user_id differs from the connected user.
    """
    props = received.properties
    headers = dict(props.headers or {})
    headers[DMQ_ELIGIBLE_HEADER] = dmq_eligible

    properties = pika.BasicProperties(
        content_type=props.content_type,
        content_encoding=props.content_encoding,
        headers=headers,
        delivery_mode=PERSISTENT,
        priority=props.priority,
        correlation_id=props.correlation_id,
        reply_to=props.reply_to,
        expiration=str(ttl_ms) if ttl_ms > 0 else None,
        message_id=props.message_id,
        timestamp=props.timestamp,
        type=props.type,
        app_id=props.app_id,
        cluster_id=props.cluster_id,
    )
    return ResendMessage(body=received.body, properties=properties, target=target)


def dump_message(message: ReceivedMessage) -> str:
    """Human readable rendering of a received message for debug logs"""
    props = message.properties
    body = message.body[:DUMP_BODY_LIMIT]
    suffix = f"... ({len(message.body)} bytes)" if len(message.body) > DUMP_BODY_LIMIT else ''
    lines = [
        f"delivery_tag: {message.delivery_tag}",
        f"redelivered: {message.redelivered}",
        f"original_destination: {message.original_destination}",
        f"message_id: {props.message_id}",
        f"correlation_id: {props.correlation_id}",
        f"content_type: {props.content_type}",
        f"delivery_mode: {props.delivery_mode}",
        f"expiration: {props.expiration}",
        f"timestamp: {props.timestamp}",
        f"headers: {props.headers}",
        f"body: {body!r}{suffix}",
    ]
    return '\n'.join(lines)
