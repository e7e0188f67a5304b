"""
Resender configuration loader.

Settings come from command line options, then environment variables (a .env
file is loaded first), then an optional YAML profile, then built-in defaults.
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

logger = logging.getLogger('resender.config')

DEFAULT_URL = 'localhost:5672'
DEFAULT_USERNAME = 'guest'
DEFAULT_PASSWORD = 'guest'
DEFAULT_VHOST = '/'
DEFAULT_FROM_QUEUE = 'dead_message_queue'
DEFAULT_CONNECTION_ATTEMPTS = 120
DEFAULT_RETRY_DELAY = 5
DEFAULT_RECEIVE_TIMEOUT = 1.0


@dataclass(frozen=True)
class ResendSettings:
    """Immutable settings for one resend run"""
    to_queue: str
    from_queue: str = DEFAULT_FROM_QUEUE
    url: str = DEFAULT_URL
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    vhost: str = DEFAULT_VHOST
    connection_attempts: int = DEFAULT_CONNECTION_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    count: int = 1
    msg_ttl: int = 0
    msg_dmq: bool = True
    receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT
    force: bool = False
    nop: bool = False


class ResendProfile:
    """YAML profile with optional `broker` and `resend` sections"""

    def __init__(self, config_file=None):
        self.config_file = config_file
        self.raw_config = {}
        if config_file:
            self.load_config()

    def load_config(self):
        """Load and parse the YAML profile"""
        try:
            with open(self.config_file, 'r') as f:
                self.raw_config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ValueError(f"Config file {self.config_file} not found")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {self.config_file}: {e}")

        if not isinstance(self.raw_config, dict):
            raise ValueError(f"Invalid config file {self.config_file}: expected a mapping")
        for section in ('broker', 'resend'):
            if not isinstance(self.raw_config.get(section, {}), dict):
                raise ValueError(f"Invalid config file {self.config_file}: '{section}' must be a mapping")

    def get_broker_config(self) -> Dict[str, Any]:
        return dict(self.raw_config.get('broker') or {})

    def get_resend_config(self) -> Dict[str, Any]:
        return dict(self.raw_config.get('resend') or {})


def parse_count(value):
    """Message count; anything but a positive integer falls back to 1"""
    try:
        count = int(value)
    except (TypeError, ValueError):
        count = 0
    if count > 0:
        return count
    logger.warning(f"Invalid count: {value} using: 1")
    return 1


def parse_ttl(value):
    """TTL in milliseconds; anything but a non-negative integer falls back to 0"""
    try:
        ttl = int(value)
    except (TypeError, ValueError):
        ttl = -1
    if ttl >= 0:
        return ttl
    logger.warning(f"Invalid msgTTL: {value} using: 0")
    return 0


def parse_dmq(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == 'true':
        return True
    if text == 'false':
        return False
    logger.warning(f"Invalid msgDMQ: {value} using: true")
    return True


def _first(*values):
    for value in values:
        if value is not None and value != '':
            return value
    return None


def load_settings(args, env_file='.env', environ=None) -> ResendSettings:
    """Assemble ResendSettings from parsed CLI args, environment and profile.

    `args` is an argparse.Namespace (or any object with the same attributes).
    Raises ValueError when no target queue is configured.
    """
    if environ is None:
        load_dotenv(env_file)
        environ = os.environ

    profile = ResendProfile(_first(getattr(args, 'config', None), environ.get('RESENDER_CONFIG')))
    broker = profile.get_broker_config()
    resend = profile.get_resend_config()

    to_queue = _first(args.to_queue, resend.get('to_queue'))
    if not to_queue:
        raise ValueError("Re-send queue must be specified (--to-queue)")

    count = _first(args.count, resend.get('count'))
    msg_ttl = _first(args.msg_ttl, resend.get('msg_ttl'))
    msg_dmq = _first(args.msg_dmq, resend.get('msg_dmq'))
    receive_timeout = _first(getattr(args, 'receive_timeout', None), resend.get('receive_timeout'))

    return ResendSettings(
        to_queue=to_queue,
        from_queue=_first(args.from_queue, resend.get('from_queue'), DEFAULT_FROM_QUEUE),
        url=_first(args.url, environ.get('QUEUE_HOST'), broker.get('url'), DEFAULT_URL),
        username=_first(args.username, environ.get('QUEUE_USER'), broker.get('username'), DEFAULT_USERNAME),
        password=_first(args.password, environ.get('QUEUE_PASSWORD'), broker.get('password'), DEFAULT_PASSWORD),
        vhost=_first(args.vhost, environ.get('QUEUE_VHOST'), broker.get('vhost'), DEFAULT_VHOST),
        connection_attempts=int(_first(environ.get('QUEUE_CONNECTION_ATTEMPTS'),
                                       broker.get('connection_attempts'), DEFAULT_CONNECTION_ATTEMPTS)),
        retry_delay=float(_first(environ.get('QUEUE_RETRY_DELAY'), broker.get('retry_delay'), DEFAULT_RETRY_DELAY)),
        count=parse_count(count) if count is not None else 1,
        msg_ttl=parse_ttl(msg_ttl) if msg_ttl is not None else 0,
        msg_dmq=parse_dmq(msg_dmq) if msg_dmq is not None else True,
        receive_timeout=float(_first(receive_timeout, DEFAULT_RECEIVE_TIMEOUT)),
        force=bool(args.force),
        nop=bool(args.nop),
    )


def describe(settings: ResendSettings) -> str:
    """One-line summary of the settings for the startup log"""
    password = "***" if settings.password else ""
    return (f"url={settings.url} user={settings.username} password={password} vhost={settings.vhost} "
            f"from={settings.from_queue} to={settings.to_queue} count={settings.count} "
            f"ttl={settings.msg_ttl} dmq={settings.msg_dmq} force={settings.force} nop={settings.nop}")
