"""NATS message provider.

Uses the asyncio ``nats-py`` client. One connection is shared by every
caller of the provider; the client serializes writes on it internally.

- send(): publish, then flush() for a round trip to the server
- subscribe()/receive(): subscription without callback, next_msg(timeout)
- listen_and_serve(): async iteration over a dedicated subscription, drained
  when the stop event is set
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional

import nats
from nats.aio.client import Client as NATSClient
from nats.aio.subscription import Subscription
from nats.errors import Error as NATSError
from nats.errors import TimeoutError as NATSTimeoutError

from src.relay.errors import (
    NotSubscribedError,
    ReceiveTimeoutError,
    TransportError,
)
from src.relay.messages.models import EventNode, ProviderDefinition
from src.relay.messages.provider import MessageProvider, ReceiverFunc, deliver


logger = logging.getLogger(__name__)

# Bound on each stop step of listen_and_serve: the drain, then the wait for
# the last delivery.
DRAIN_TIMEOUT_SECONDS = 5.0


class NATSProvider(MessageProvider):
    """MessageProvider backed by a NATS server.

    Attributes:
        definition: Provider definition with the ``nats://`` URL and the
            receive timeout.
    """

    drain_timeout: float = DRAIN_TIMEOUT_SECONDS

    def __init__(self, definition: ProviderDefinition):
        super().__init__(definition)
        self._connection: Optional[NATSClient] = None
        self._subscriptions: Dict[str, Subscription] = {}

    @property
    def connection(self) -> NATSClient:
        if self._connection is None:
            raise TransportError(
                f"NATS provider '{self.name}' is not connected. Call connect() first."
            )
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.is_connected

    async def connect(self) -> None:
        if self._connection is not None:
            logger.warning("NATS provider %s already connected", self.name)
            return
        try:
            self._connection = await nats.connect(self.definition.url)
        except (NATSError, OSError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Unable to connect to NATS at {self.definition.url}: {e}",
                original_error=e,
            ) from e

    def _url_and_topic(self, node: EventNode) -> str:
        return f"{self.definition.url}:{node.topic}"

    async def send(
        self,
        node: EventNode,
        payload: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        logger.debug("natsProvider: sending %d bytes to %s", len(payload), node.topic)
        conn = self.connection
        try:
            await conn.publish(
                node.topic,
                payload,
                headers=dict(headers) if headers else None,
            )
            # Round trip to the server; returns once it has seen the publish.
            await conn.flush()
        except (NATSError, OSError) as e:
            raise TransportError(
                f"Unable to publish to {self._url_and_topic(node)}: {e}",
                node_name=node.name,
                original_error=e,
            ) from e

    async def subscribe(self, node: EventNode) -> None:
        logger.debug("Subscribing to NATS provider on %s", self._url_and_topic(node))
        try:
            sub = await self.connection.subscribe(node.topic)
        except (NATSError, OSError) as e:
            raise TransportError(
                f"Unable to subscribe to {self._url_and_topic(node)}: {e}",
                node_name=node.name,
                original_error=e,
            ) from e

        previous = self._subscriptions.get(node.name)
        self._subscriptions[node.name] = sub
        if previous is not None:
            await self._unsubscribe(previous, node)

    async def receive(self, node: EventNode) -> bytes:
        sub = self._subscriptions.get(node.name)
        if sub is None:
            logger.error(
                "No subscription for eventSource '%s'. It should be defined and subscribed to.",
                node.name,
            )
            raise NotSubscribedError(node.name)

        logger.debug(
            "natsProvider: waiting up to %ss for data from source %s and provider %s",
            self.timeout,
            node.name,
            node.provider_ref,
        )
        try:
            msg = await sub.next_msg(timeout=self.timeout)
        except NATSTimeoutError as e:
            raise ReceiveTimeoutError(node.name, self.timeout) from e
        except NATSError as e:
            raise TransportError(
                f"Unable to receive from {self._url_and_topic(node)}: {e}",
                node_name=node.name,
                original_error=e,
            ) from e
        return msg.data

    async def listen_and_serve(
        self,
        node: EventNode,
        receiver: ReceiverFunc,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        url_and_topic = self._url_and_topic(node)
        logger.info("natsProvider: starting to listen for events from %s", url_and_topic)

        try:
            sub = await self.connection.subscribe(node.topic)
        except (NATSError, OSError, TransportError) as e:
            logger.error(
                "Unable to set up listener for NATS events for %s: %s",
                url_and_topic,
                str(e),
            )
            return

        consumer = asyncio.create_task(self._consume(sub, node, receiver))
        try:
            if stop is not None and not await self._stopped(stop, consumer, sub, node):
                return
            await consumer
        finally:
            if not consumer.done():
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)
            await self._unsubscribe(sub, node)
            logger.info("natsProvider: stopped listening on %s", url_and_topic)

    async def _consume(self, sub: Subscription, node: EventNode, receiver: ReceiverFunc) -> None:
        async for msg in sub.messages:
            logger.debug("Received message on %s: %d bytes", node.topic, len(msg.data))
            await deliver(receiver, node, msg.data)

    async def _stopped(
        self,
        stop: asyncio.Event,
        consumer: asyncio.Task,
        sub: Subscription,
        node: EventNode,
    ) -> bool:
        """Wait until stop is set, then drain sub and let consumer finish.

        Draining hands every message the server already sent to the consumer
        and then ends iteration. Both steps are bounded by drain_timeout.

        Returns:
            Whether consumer finished. The caller cancels it otherwise.
        """
        stopper = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({consumer, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if consumer.done():
            return True

        try:
            await asyncio.wait_for(sub.drain(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Draining subscription on %s did not finish within %ss",
                node.topic,
                self.drain_timeout,
            )
        except NATSError as e:
            logger.warning("Unable to drain subscription on %s: %s", node.topic, str(e))

        done, _ = await asyncio.wait({consumer}, timeout=self.drain_timeout)
        if not done:
            logger.warning(
                "Listener on %s still running after drain, cancelling", node.topic
            )
            return False
        return True

    async def _unsubscribe(self, sub: Subscription, node: EventNode) -> None:
        if self._connection is None or self._connection.is_closed:
            return
        try:
            await sub.unsubscribe()
        except NATSError as e:
            logger.debug("Unsubscribe from %s failed: %s", node.topic, str(e))

    async def close(self) -> None:
        self._subscriptions.clear()
        if self._connection is None:
            return
        conn, self._connection = self._connection, None
        if conn.is_closed:
            return
        try:
            await conn.drain()
        except NATSError as e:
            logger.warning("Error draining NATS connection %s: %s", self.name, str(e))
