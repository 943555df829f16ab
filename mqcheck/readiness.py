# mqcheck/readiness.py
import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_READY_ATTEMPTS, DEFAULT_READY_INTERVAL, Endpoint
from .errors import ReadinessTimeout

logger = logging.getLogger(__name__)


@dataclass
class ReadinessResult:
    """Outcome of a bounded readiness poll. Falsy when the target never came up."""

    target: str
    ready: bool
    attempts: int
    last_error: Optional[BaseException] = None

    def __bool__(self):
        return self.ready

    def raise_for_status(self) -> "ReadinessResult":
        if not self.ready:
            raise ReadinessTimeout(self.target, self.attempts, self.last_error)
        return self


def wait_until_ready(
    endpoint: Endpoint,
    max_attempts: int = DEFAULT_READY_ATTEMPTS,
    interval: float = DEFAULT_READY_INTERVAL,
    connect_timeout: float = 1.0,
) -> ReadinessResult:
    """
    Poll a TCP endpoint until it accepts a connection.

    Each attempt opens and immediately closes a bare socket. Failed attempts
    are separated by ``interval`` seconds; after ``max_attempts`` failures the
    result is returned with ``ready=False`` rather than raised, so callers
    must check it (or call ``raise_for_status()``).
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            sock = socket.create_connection((endpoint.host, endpoint.port), timeout=connect_timeout)
        except OSError as e:
            last_error = e
            logger.debug(f"{endpoint} not accepting connections (attempt {attempt}/{max_attempts}): {e}")
            if attempt < max_attempts:
                time.sleep(interval)
            continue
        sock.close()
        logger.info(f"{endpoint} accepted a connection after {attempt} attempt(s)")
        return ReadinessResult(endpoint.address, True, attempt)

    logger.warning(f"{endpoint} still unreachable after {max_attempts} attempts")
    return ReadinessResult(endpoint.address, False, max_attempts, last_error)
