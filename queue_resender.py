#!/usr/bin/env python3
"""
Resend messages from one queue (e.g. a dead message queue) to another queue.

All messages are read and re-sent inside one transaction: if any message cannot
be read or sent, or an error occurs, the transaction is rolled back and the
source queue is left untouched.

Messages published straight to a queue keep that queue name in their
dead-letter history; it must match --to-queue unless --force is given.
Messages that reached their queue through a routed exchange cannot be checked,
so it is up to the operator to pick the right --to-queue.

Run with --nop first to check the behaviour: the batch is read and staged, then
rolled back.

Usage:
  QUEUE_HOST=... QUEUE_USER=... QUEUE_PASSWORD=... \
  python queue_resender.py --to-queue <queue_name> [--from-queue Q] [--count N]

Example:
  python queue_resender.py --from-queue orders.dlq --to-queue orders --count 10 --nop
"""

import os
import sys
import logging
import argparse

from resender.engine import Outcome, ResendEngine
from resender.resend_config import DEFAULT_FROM_QUEUE, describe, load_settings


def setup_logging(debug=False):
    """Setup console logging for the resender"""
    logger = logging.getLogger('resender')
    level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'INFO').upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    return logger


def build_parser():
    parser = argparse.ArgumentParser(
        description='Transactionally resend messages from one queue to another')
    parser.add_argument('--url', help='Broker amqp(s):// URL or host[:port] (default localhost:5672, env QUEUE_HOST)')
    parser.add_argument('--username', help='Broker username (default guest, env QUEUE_USER)')
    parser.add_argument('--password', help='Broker password (default guest, env QUEUE_PASSWORD)')
    parser.add_argument('--vhost', help='Broker virtual host (default /, env QUEUE_VHOST)')
    parser.add_argument('--from-queue', help=f'Queue to read from (default {DEFAULT_FROM_QUEUE})')
    parser.add_argument('--to-queue', help='Queue to re-send to (required)')
    parser.add_argument('--count', help='Number of messages to read and re-send (default 1)')
    parser.add_argument('--msg-ttl', help='TimeToLive in millisecs set on resent messages (default 0 - no expiry)')
    parser.add_argument('--msg-dmq', help='DMQ eligible flag set on resent messages, true|false (default true)')
    parser.add_argument('--receive-timeout', type=float,
                        help='Seconds to wait for each message before giving up (default 1.0)')
    parser.add_argument('--config', help='YAML profile with broker/resend sections (env RESENDER_CONFIG)')
    parser.add_argument('--force', action='store_true', help='Force resend, ignoring queue mismatch warnings')
    parser.add_argument('--nop', action='store_true', help='Force rollback, do not commit transaction')
    parser.add_argument('--debug', action='store_true', help='Log the content of every message read')
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args.debug)

    try:
        settings = load_settings(args)
    except ValueError as e:
        logger.error(str(e))
        parser.print_usage(sys.stderr)
        return 1

    logger.info(f"Starting resend: {describe(settings)}")
    result = ResendEngine(settings).run()

    if result.outcome is Outcome.COMMITTED:
        print(f"✅ Resent {result.sent} messages from {settings.from_queue} to {settings.to_queue}")
    elif result.outcome is Outcome.DRY_RUN:
        print(f"🔍 NOP: {result.sent} messages staged and rolled back, {settings.from_queue} unchanged")
    elif result.outcome is Outcome.UNCONFIRMED:
        print(f"⚠️  Commit unconfirmed after staging {result.sent} messages, "
              f"check {settings.from_queue} and {settings.to_queue} on the broker")
    else:
        print(f"❌ Resend failed ({result.outcome.name}): {result.error}")
    for warning in result.warnings:
        print(f"⚠️  {warning}")

    return result.outcome.exit_code


if __name__ == '__main__':
    sys.exit(main())
