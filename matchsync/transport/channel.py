"""
Message-level contract of the realtime (push) transport.

Framing, handshake and heartbeats belong to the concrete transport. The ConnectionManager only relies on
what is described here: open a channel with a bearer token, (un)subscribe to topics, publish to
destinations, and receive messages one by one until the transport is lost.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol


@dataclass(frozen=True)
class InboundMessage:
    topic: str
    body: Mapping[str, Any] = field(default_factory=dict)


class Channel(Protocol):
    """One physical connection. Every method raises TransportError once the connection is lost."""

    async def subscribe(self, topic: str) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...

    async def publish(self, destination: str, payload: Mapping[str, Any]) -> None: ...

    async def receive(self) -> InboundMessage:
        """Wait for the next message on any subscribed topic."""
        ...

    async def close(self) -> None: ...


class Connector(Protocol):
    async def open(self, token: str | None) -> Channel:
        """
        Establish a new channel.
        ----

        Raises AuthenticationError when the credential is rejected (terminal), TransportError for anything
        that is worth retrying.
        """
        ...
