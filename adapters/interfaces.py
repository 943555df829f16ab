# adapters/interfaces.py
from typing import Optional, Protocol


class Destination(Protocol):
    name: str


class Message(Protocol):
    body: str


class MessageProducer(Protocol):
    def send(self, destination: Destination, body: str) -> None: ...


class MessageConsumer(Protocol):
    def receive(self, timeout: float) -> Optional[Message]: ...


class MessagingSession(Protocol):
    """The slice of a queue-manager client the harness relies on."""

    def queue(self, name: str, declare: bool = True) -> Destination: ...

    def create_producer(self) -> MessageProducer: ...

    def create_consumer(self, destination: Destination) -> MessageConsumer: ...

    def close(self) -> None: ...
