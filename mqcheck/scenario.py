# mqcheck/scenario.py
"""
Request/response scenarios run against a live broker.

Each scenario opens its own session and closes it on every exit path.
"""
import logging
from typing import Optional

from adapters.broker import ConnectionConfig, connect
from adapters.interfaces import MessagingSession

from .config import DEFAULT_RECEIVE_TIMEOUT, Credentials
from .errors import SecurityRejected

logger = logging.getLogger(__name__)


def exchange_one(session: MessagingSession, queue: str, body: str, timeout: float) -> Optional[str]:
    destination = session.queue(queue)
    session.create_producer().send(destination, body)
    logger.info(f"Sent {len(body)} chars to {queue}")
    message = session.create_consumer(destination).receive(timeout)
    if message is None:
        logger.warning(f"No message on {queue} within {timeout}s")
        return None
    return message.body


def send_and_receive(
    config: ConnectionConfig,
    credentials: Optional[Credentials],
    queue: str,
    body: str,
    timeout: float = DEFAULT_RECEIVE_TIMEOUT,
) -> Optional[str]:
    """Send one message and read one back. Returns the body, or None on timeout."""
    with connect(config, credentials) as session:
        return exchange_one(session, queue, body, timeout)


def expect_security_rejected(
    config: ConnectionConfig, credentials: Optional[Credentials]
) -> SecurityRejected:
    """Connect expecting the broker to refuse the login, and return the refusal."""
    try:
        session = connect(config, credentials)
    except SecurityRejected as e:
        logger.info(f"Connection refused as expected (reason {e.reason_code})")
        return e
    session.close()
    raise AssertionError(f"Connection to {config.connection_name} was accepted; expected a security rejection")
