# adapters/broker.py
import getpass
import logging
from dataclasses import dataclass, replace
from typing import Any, Optional

import pika
import pika.exceptions
from pika.credentials import PlainCredentials

from mqcheck import errors
from mqcheck.config import DEFAULT_RECEIVE_TIMEOUT, Credentials, Endpoint, TlsMaterial
from mqcheck.errors import NOT_AUTHORIZED, ProtocolError, SecurityRejected, TransportError

from .tls import create_tls_context, select_cipher_suite

logger = logging.getLogger(__name__)

TRANSPORT_CLIENT = "client"
DEFAULT_CONNECT_TIMEOUT = 10.0

# Raised by pika when the broker drops the connection mid-handshake at a stage
# that only fails for bad credentials or missing permissions
_AUTH_FAILURES = (
    pika.exceptions.ProbableAuthenticationError,
    pika.exceptions.ProbableAccessDeniedError,
)


def _ambient_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "<unknown>"


def identity_of(credentials: Optional[Credentials]) -> str:
    """User presented to the broker: the supplied username, else the OS user."""
    return credentials.username if credentials is not None else _ambient_user()


@dataclass
class ConnectionConfig:
    """Everything needed to open a session, without opening one."""

    channel: str
    connection_name: str
    transport_type: str = TRANSPORT_CLIENT
    ssl_options: Optional[pika.SSLOptions] = None
    cipher_suite: Optional[str] = None
    user_authentication: bool = False
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    heartbeat: Optional[int] = None

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint.parse(self.connection_name)

    @property
    def uses_tls(self) -> bool:
        return self.ssl_options is not None

    def parameters(self, credentials: Optional[Credentials] = None) -> pika.ConnectionParameters:
        if self.user_authentication:
            if credentials is None or not credentials.uses_password:
                raise ValueError("user_authentication is set but no password was supplied")
            creds = PlainCredentials(credentials.username, credentials.password)
        else:
            # Passwordless login still names a user; the broker decides
            creds = PlainCredentials(identity_of(credentials), "")

        ep = self.endpoint
        kwargs = dict(
            host=ep.host,
            port=ep.port,
            virtual_host=self.channel,
            credentials=creds,
            ssl_options=self.ssl_options,
            connection_attempts=1,
            socket_timeout=self.connect_timeout,
        )
        if self.heartbeat is not None:
            kwargs["heartbeat"] = self.heartbeat
        return pika.ConnectionParameters(**kwargs)


@dataclass(frozen=True)
class Destination:
    name: str


@dataclass
class Message:
    body: str
    properties: Any = None


def build_factory(
    channel: str,
    endpoint: Endpoint,
    tls: Optional[TlsMaterial] = None,
    *,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    heartbeat: Optional[int] = None,
) -> ConnectionConfig:
    config = ConnectionConfig(
        channel=channel,
        connection_name=endpoint.address,
        connect_timeout=connect_timeout,
        heartbeat=heartbeat,
    )
    if tls is None:
        logger.info("Not using TLS")
        return config

    logger.info(f"Using TLS.  Trust store={tls.truststore_path}")
    ctx = create_tls_context(tls)
    config.ssl_options = pika.SSLOptions(ctx, server_hostname=endpoint.host)
    config.cipher_suite = select_cipher_suite(tls)
    logger.info(f"TLS cipher suite {config.cipher_suite} ({tls.cipher_policy.value})")
    return config


def reason_code(exc: BaseException) -> Optional[int]:
    """Broker reply code behind a client exception, if there is one."""
    if isinstance(exc, _AUTH_FAILURES):
        return NOT_AUTHORIZED
    if isinstance(exc, (pika.exceptions.ConnectionClosed, pika.exceptions.ChannelClosed)):
        return exc.reply_code
    return None


def classify_failure(exc: BaseException, target: str) -> errors.ConnectionError:
    if isinstance(exc, pika.exceptions.AuthenticationError):
        # Client side: no login mechanism in common, the broker never judged the user
        return ProtocolError(f"{target}: no supported login mechanism ({exc!r})")
    code = reason_code(exc)
    if code == NOT_AUTHORIZED:
        return SecurityRejected(f"{target}: not authorized ({exc!r})", reason_code=code)
    if code is not None:
        return ProtocolError(f"{target}: broker rejected session with code {code} ({exc!r})", reason_code=code)
    return TransportError(f"{target}: transport failure ({exc!r})")


class PikaProducer:
    def __init__(self, channel):
        self._ch = channel

    def send(self, destination: Destination, body: str):
        props = pika.BasicProperties(content_type="text/plain", delivery_mode=2)
        try:
            self._ch.basic_publish(
                exchange="",
                routing_key=destination.name,
                body=body.encode("utf-8"),
                properties=props,
            )
        except (pika.exceptions.AMQPError, OSError) as e:
            raise classify_failure(e, f"send to {destination.name}") from e


class PikaConsumer:
    def __init__(self, channel, destination: Destination):
        self._ch = channel
        self.destination = destination

    def receive(self, timeout: float = DEFAULT_RECEIVE_TIMEOUT) -> Optional[Message]:
        """
        Wait up to ``timeout`` seconds for one message.

        Returns None when nothing arrived in time. Only the returned message is
        acknowledged; anything else the broker pushed is requeued on cancel.
        """
        if timeout is None or timeout <= 0:
            raise ValueError("receive needs a positive timeout")
        try:
            return self._receive_one(timeout)
        except (pika.exceptions.AMQPError, OSError) as e:
            raise classify_failure(e, f"receive from {self.destination.name}") from e

    def _receive_one(self, timeout: float) -> Optional[Message]:
        method, properties, body = next(
            self._ch.consume(self.destination.name, inactivity_timeout=timeout)
        )
        try:
            if method is None:
                return None
            # Undecodable bodies stay unacked and go back on the queue
            message = Message(body.decode("utf-8"), properties)
            self._ch.basic_ack(delivery_tag=method.delivery_tag)
            return message
        finally:
            if self._ch.is_open:
                self._ch.cancel()


class PikaSession:
    """
    One open connection plus one channel. Close exactly once; extra calls to
    close() are no-ops.
    """

    def __init__(self, connection, config: ConnectionConfig):
        self._conn = connection
        self.config = config
        self._closed = False
        self._ch = connection.channel()

    @property
    def is_open(self) -> bool:
        return not self._closed and self._conn.is_open

    def queue(self, name: str, declare: bool = True) -> Destination:
        try:
            self._ch.queue_declare(queue=name, durable=True, passive=not declare)
        except (pika.exceptions.AMQPError, OSError) as e:
            raise classify_failure(e, f"queue {name}") from e
        return Destination(name)

    def create_producer(self) -> PikaProducer:
        return PikaProducer(self._ch)

    def create_consumer(self, destination: Destination) -> PikaConsumer:
        return PikaConsumer(self._ch, destination)

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            if self._conn.is_open:
                self._conn.close()
        except (pika.exceptions.ConnectionWrongStateError, pika.exceptions.StreamLostError) as e:
            logger.debug(f"Session to {self.config.connection_name} already gone: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def connect(config: ConnectionConfig, credentials: Optional[Credentials] = None) -> PikaSession:
    if credentials is not None and credentials.uses_password:
        config = replace(config, user_authentication=True)
    logger.info(f"Connecting to {config.channel}/TCP/{config.connection_name} as {identity_of(credentials)}")

    params = config.parameters(credentials)
    try:
        conn = pika.BlockingConnection(params)
    except (pika.exceptions.AMQPError, OSError) as e:
        err = classify_failure(e, config.connection_name)
        logger.error(f"Connection to {config.connection_name} failed: {err}")
        raise err from e

    try:
        return PikaSession(conn, config)
    except (pika.exceptions.AMQPError, OSError) as e:
        err = classify_failure(e, config.connection_name)
        logger.error(f"Opening a channel on {config.connection_name} failed: {err}")
        try:
            conn.close()
        except pika.exceptions.AMQPError:
            logger.debug("Connection already closed after channel failure")
        raise err from e

