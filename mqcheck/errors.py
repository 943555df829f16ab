# mqcheck/errors.py
"""Failure taxonomy for connection setup and message exchange."""

from typing import Optional

# AMQP reply code the broker uses for refused logins and denied access
NOT_AUTHORIZED = 403


class MQCheckError(Exception):
    """Base class for every error raised by the harness."""


class ConfigError(MQCheckError):
    """A configuration value is missing or malformed."""


class SecurityConfigError(ConfigError):
    """Trust store or cipher settings cannot be used (bad path, passphrase, cipher)."""


class ConnectionError(MQCheckError):
    """Opening a session to the broker failed.

    Shadows the builtin inside this module; import it qualified
    (``errors.ConnectionError``) or under an alias.
    """

    def __init__(self, message: str, reason_code: Optional[int] = None):
        super().__init__(message)
        self.reason_code = reason_code


class SecurityRejected(ConnectionError):
    """The broker refused the authentication attempt."""

    def __init__(self, message: str, reason_code: Optional[int] = NOT_AUTHORIZED):
        super().__init__(message, reason_code=reason_code)

    @property
    def not_authorized(self) -> bool:
        return self.reason_code == NOT_AUTHORIZED


class TransportError(ConnectionError):
    """TCP or TLS handshake failure: unreachable host, untrusted certificate, cipher mismatch."""


class ProtocolError(ConnectionError):
    """The broker was reached but rejected the session for a reason other than authentication."""


class ReadinessTimeout(MQCheckError):
    """The broker endpoint never became reachable within the retry budget."""

    def __init__(self, target: str, attempts: int, last_error: Optional[BaseException] = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"{target} not ready after {attempts} attempts{detail}")
        self.target = target
        self.attempts = attempts
        self.last_error = last_error
