# adapters/management.py
import logging
import time
from urllib.parse import quote

import requests

from mqcheck.config import DEFAULT_READY_ATTEMPTS, DEFAULT_READY_INTERVAL
from mqcheck.errors import SecurityRejected
from mqcheck.readiness import ReadinessResult

logger = logging.getLogger(__name__)


class ManagementClient:
    """Broker HTTP management API: health checks and REST messaging."""

    def __init__(self, base_url: str, verify=True, timeout: float = 30.0):
        # Remove trailing slash and ensure proper format
        self.base_url = base_url.rstrip("/")
        self.verify = verify
        self.timeout = timeout

    def _make_request(self, method, endpoint, data=None):
        """Helper method to make HTTP requests to the management API"""
        url = f"{self.base_url}/api{endpoint}"
        headers = {"Content-Type": "application/json"}

        try:
            if method.upper() == "POST":
                response = requests.post(url, headers=headers, json=data, verify=self.verify, timeout=self.timeout)
            elif method.upper() == "GET":
                response = requests.get(url, headers=headers, verify=self.verify, timeout=self.timeout)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            if response.status_code == 401:
                raise SecurityRejected(f"{method} {endpoint}: 401 Unauthorized", reason_code=401)
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to {method} {endpoint}: {e}")
            raise

    def aliveness(self, vhost: str) -> bool:
        """Declare, publish and consume on the broker's own test queue"""
        result = self._make_request("GET", f"/aliveness-test/{_quote(vhost)}")
        return result.get("status") == "ok"

    def wait_until_healthy(
        self,
        vhost: str,
        max_attempts: int = DEFAULT_READY_ATTEMPTS,
        interval: float = DEFAULT_READY_INTERVAL,
    ) -> ReadinessResult:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        target = f"{self.base_url} ({vhost})"
        last_error = None
        for attempt in range(1, max_attempts + 1):
            try:
                if self.aliveness(vhost):
                    logger.info(f"Management API reports {vhost} healthy")
                    return ReadinessResult(target, True, attempt)
                last_error = None
            except requests.exceptions.RequestException as e:
                last_error = e
            if attempt < max_attempts:
                time.sleep(interval)
        logger.warning(f"Management API never reported {vhost} healthy")
        return ReadinessResult(target, False, max_attempts, last_error)

    def publish(self, vhost: str, queue: str, body: str) -> bool:
        """Publish a text message to a queue through the default exchange"""
        data = {
            "properties": {"delivery_mode": 2, "content_type": "text/plain"},
            "routing_key": queue,
            "payload": body,
            "payload_encoding": "string",
        }
        result = self._make_request("POST", f"/exchanges/{_quote(vhost)}/amq.default/publish", data)
        routed = bool(result.get("routed"))
        if not routed:
            logger.warning(f"Message to {queue} was not routed")
        return routed

    def get(self, vhost: str, queue: str, count: int = 1) -> list:
        """Destructively fetch up to ``count`` messages from a queue"""
        data = {"count": count, "ackmode": "ack_requeue_false", "encoding": "auto"}
        result = self._make_request("POST", f"/queues/{_quote(vhost)}/{_quote(queue)}/get", data)
        return [m.get("payload") for m in result or []]


def _quote(name: str) -> str:
    return quote(name, safe="")
