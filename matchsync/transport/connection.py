"""ConnectionManager: lifecycle of one realtime channel (connect, subscribe, publish, reconnect, teardown)."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from contextlib import suppress
from typing import Any, Mapping, Self

from matchsync.core.config import DEFAULT_RECONNECT_DELAY_SECONDS
from matchsync.core.exceptions import (
    AuthenticationError,
    SessionStateError,
    SyncError,
    TransportError,
)
from matchsync.core.shared_types import ConnectionPhase
from matchsync.db.repository import CredentialProvider
from matchsync.transport.channel import Channel, Connector, InboundMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Mapping[str, Any]], None]
PhaseListener = Callable[[ConnectionPhase], None]


class ConnectionManager:
    """
    Owns one channel handle and keeps it alive.

    Phases: CONNECTING -> LIVE, LIVE -> RECONNECTING (transport lost), RECONNECTING -> LIVE,
    and * -> DISCONNECTED on close() or when the credential is rejected. Transient failures are retried
    with a fixed delay until close(). Subscriptions are remembered and re-established on every reconnect.

    publish() is best-effort: it raises TransportError unless the phase is LIVE. There is no hidden queue,
    so callers check the phase (or catch the error) and fall back to REST.

    Never touches chess semantics: handlers get the raw message body.
    """

    def __init__(
        self,
        connector: Connector,
        retry_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._connector = connector
        self._retry_delay = retry_delay_seconds
        self._credentials: CredentialProvider | None = None
        self._phase = ConnectionPhase.DISCONNECTED
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._phase_listeners: list[PhaseListener] = []
        self._channel: Channel | None = None
        self._subscribed: set[str] = set()
        self._task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False
        self.last_error: SyncError | None = None

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def is_live(self) -> bool:
        return self._phase == ConnectionPhase.LIVE

    @property
    def is_closed(self) -> bool:
        return self._closed

    def add_phase_listener(self, listener: PhaseListener) -> Callable[[], None]:
        self._phase_listeners.append(listener)

        def remove() -> None:
            if listener in self._phase_listeners:
                self._phase_listeners.remove(listener)

        return remove

    # --- Lifecycle ---
    def connect(self, credentials: CredentialProvider) -> Self:
        """Start the connect/retry loop on the running event loop. Calling it again is a no-op."""
        if self._closed:
            raise SessionStateError("Connection handle is closed.")
        if self._task is not None:
            return self

        self._credentials = credentials
        self._set_phase(ConnectionPhase.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._on_run_done)
        return self

    async def close(self) -> None:
        """Tear everything down. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        for background in list(self._background):
            background.cancel()

        channel, self._channel = self._channel, None
        if channel is not None:
            await self._close_channel(channel)

        self._handlers.clear()
        self._set_phase(ConnectionPhase.DISCONNECTED)

    # --- Topics ---
    def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], None]:
        """Register a handler for the topic. Returns the function that removes it again."""
        handlers = self._handlers.setdefault(topic, [])
        handlers.append(handler)
        if self.is_live and topic not in self._subscribed:
            self._subscribe_now(topic)

        def unsubscribe() -> None:
            topic_handlers = self._handlers.get(topic)
            if not topic_handlers or handler not in topic_handlers:
                return
            topic_handlers.remove(handler)
            if topic_handlers:
                return
            del self._handlers[topic]
            if self.is_live and topic in self._subscribed:
                self._subscribed.discard(topic)
                self._spawn(self._unsubscribe_channel(topic))

        return unsubscribe

    async def publish(self, destination: str, payload: Mapping[str, Any]) -> None:
        channel = self._channel
        if channel is None or not self.is_live:
            raise TransportError(
                f"Cannot publish to {destination}: connection is {self._phase.value}."
            )
        await channel.publish(destination, payload)

    # --- Internal: connect / retry loop ---
    async def _run(self) -> None:
        while not self._closed:
            assert self._credentials is not None
            try:
                channel = await self._connector.open(self._credentials.current_token())
            except AuthenticationError as exc:
                self._fail(exc)
                return
            except TransportError as exc:
                logger.info(
                    "Realtime connection failed (%s), retrying in %.1fs",
                    exc,
                    self._retry_delay,
                )
                await asyncio.sleep(self._retry_delay)
                continue

            try:
                await self._serve(channel)
            except AuthenticationError as exc:
                self._fail(exc)
                return
            except TransportError as exc:
                self.last_error = exc
                logger.info("Realtime connection lost: %s", exc)
            finally:
                self._channel = None
                self._subscribed = set()
                await self._close_channel(channel)

            if self._closed:
                return
            self._set_phase(ConnectionPhase.RECONNECTING)
            await asyncio.sleep(self._retry_delay)

    def _on_run_done(self, task: asyncio.Task[None]) -> None:
        """The run loop only ends on close() or a rejected credential. Anything else is a bug in a channel."""
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("Realtime connection loop crashed", exc_info=exc)
        if self._task is task:
            self._task = None
        self._channel = None
        self._subscribed = set()
        self.last_error = TransportError(f"Realtime connection crashed: {exc!r}")
        self._set_phase(ConnectionPhase.DISCONNECTED)

    async def _serve(self, channel: Channel) -> None:
        """Subscribe every registered topic, go LIVE, then pump messages until the transport is lost."""
        self._channel = channel
        self._subscribed = set()
        # handlers may be registered while we are subscribing. Only go LIVE once none is missing.
        while missing := [t for t in self._handlers if t not in self._subscribed]:
            for topic in missing:
                await channel.subscribe(topic)
                self._subscribed.add(topic)
        self._set_phase(ConnectionPhase.LIVE)

        while True:
            message = await channel.receive()
            self._dispatch(message)

    def _dispatch(self, message: InboundMessage) -> None:
        handlers = list(self._handlers.get(message.topic, ()))
        if not handlers:
            logger.debug("Dropping message on unsubscribed topic %s", message.topic)
            return
        for handler in handlers:
            try:
                handler(message.body)
            except Exception:
                logger.exception("Handler for topic %s failed", message.topic)

    def _fail(self, exc: AuthenticationError) -> None:
        logger.warning("Realtime connection rejected, giving up: %s", exc)
        self.last_error = exc
        self._set_phase(ConnectionPhase.DISCONNECTED)

    def _set_phase(self, phase: ConnectionPhase) -> None:
        if phase == self._phase:
            return
        logger.info("Connection phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        for listener in list(self._phase_listeners):
            listener(phase)

    # --- Internal: channel calls made outside of the run loop ---
    def _subscribe_now(self, topic: str) -> None:
        self._subscribed.add(topic)
        self._spawn(self._subscribe_channel(topic))

    async def _subscribe_channel(self, topic: str) -> None:
        channel = self._channel
        if channel is not None:
            await channel.subscribe(topic)

    async def _unsubscribe_channel(self, topic: str) -> None:
        channel = self._channel
        if channel is not None:
            await channel.unsubscribe(topic)

    def _spawn(self, coroutine: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(self._guarded(coroutine))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _guarded(self, coroutine: Coroutine[Any, Any, None]) -> None:
        try:
            await coroutine
        except TransportError as exc:
            # the run loop notices the lost transport on its own and resubscribes on reconnect
            logger.info("Channel call failed: %s", exc)

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await channel.close()
        except TransportError as exc:
            logger.debug("Error while closing channel: %s", exc)
