"""In-process loopback message provider.

Used for local development without a broker and in tests. Each provider
owns a private broker: topics fan out to every subscription, and messages
sent to a topic nobody subscribes to are kept until the first subscription
on that topic is created, up to MAX_BACKLOG per topic (oldest dropped
first).
"""

import asyncio
import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Mapping, Optional

from src.relay.errors import NotSubscribedError, ReceiveTimeoutError, TransportError
from src.relay.messages.models import EventNode, ProviderDefinition
from src.relay.messages.provider import MessageProvider, ReceiverFunc, deliver


logger = logging.getLogger(__name__)

# Queued after the last message of a closed subscription.
_CLOSED = object()

# Per topic, for messages sent before anyone subscribes.
MAX_BACKLOG = 1000


class MemoryBroker:
    """Topic routing for MemoryProvider. Confined to one event loop.

    Args:
        max_backlog: Messages kept per topic while it has no subscription.
            When full, the oldest message is dropped.
    """

    def __init__(self, max_backlog: int = MAX_BACKLOG) -> None:
        self.max_backlog = max_backlog
        self._queues: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self._backlog: Dict[str, Deque[bytes]] = {}

    def publish(self, topic: str, payload: bytes) -> None:
        queues = self._queues.get(topic)
        if not queues:
            backlog = self._backlog.setdefault(topic, deque(maxlen=self.max_backlog))
            if len(backlog) == backlog.maxlen:
                logger.warning(
                    "memoryProvider: backlog for %s is full (%d), dropping oldest message",
                    topic,
                    self.max_backlog,
                )
            backlog.append(payload)
            return
        for queue in queues:
            queue.put_nowait(payload)

    def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        for payload in self._backlog.pop(topic, ()):
            queue.put_nowait(payload)
        self._queues[topic].append(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        queues = self._queues.get(topic, [])
        if queue in queues:
            queues.remove(queue)
            queue.put_nowait(_CLOSED)

    def close(self) -> None:
        for topic in list(self._queues):
            for queue in list(self._queues[topic]):
                self.unsubscribe(topic, queue)
        self._queues.clear()
        self._backlog.clear()


class MemoryProvider(MessageProvider):
    """MessageProvider that loops messages back within the process."""

    def __init__(self, definition: ProviderDefinition):
        super().__init__(definition)
        self.broker = MemoryBroker()
        self._subscriptions: Dict[str, asyncio.Queue] = {}
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return not self._closed

    async def connect(self) -> None:
        self._closed = False

    async def send(
        self,
        node: EventNode,
        payload: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if self._closed:
            raise TransportError(
                f"Memory provider '{self.name}' is closed", node_name=node.name
            )
        logger.debug("memoryProvider: sending %d bytes to %s", len(payload), node.topic)
        self.broker.publish(node.topic, bytes(payload))

    async def subscribe(self, node: EventNode) -> None:
        if self._closed:
            raise TransportError(
                f"Memory provider '{self.name}' is closed", node_name=node.name
            )
        previous = self._subscriptions.pop(node.name, None)
        if previous is not None:
            self.broker.unsubscribe(node.topic, previous)
        self._subscriptions[node.name] = self.broker.subscribe(node.topic)

    async def receive(self, node: EventNode) -> bytes:
        queue = self._subscriptions.get(node.name)
        if queue is None:
            raise NotSubscribedError(node.name)
        try:
            payload = await asyncio.wait_for(queue.get(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ReceiveTimeoutError(node.name, self.timeout) from e
        if payload is _CLOSED:
            self._subscriptions.pop(node.name, None)
            raise TransportError(
                f"Subscription for '{node.name}' was closed", node_name=node.name
            )
        return payload

    async def listen_and_serve(
        self,
        node: EventNode,
        receiver: ReceiverFunc,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        if self._closed:
            logger.error("Unable to set up listener for %s: provider closed", node.topic)
            return
        queue = self.broker.subscribe(node.topic)
        logger.info("memoryProvider: listening on %s", node.topic)

        stopper = None
        if stop is not None:
            stopper = asyncio.create_task(self._close_when_set(stop, node, queue))
        try:
            while True:
                payload = await queue.get()
                if payload is _CLOSED:
                    break
                await deliver(receiver, node, payload)
        finally:
            if stopper is not None and not stopper.done():
                stopper.cancel()
            self.broker.unsubscribe(node.topic, queue)
            logger.info("memoryProvider: stopped listening on %s", node.topic)

    async def _close_when_set(
        self, stop: asyncio.Event, node: EventNode, queue: asyncio.Queue
    ) -> None:
        await stop.wait()
        self.broker.unsubscribe(node.topic, queue)

    async def close(self) -> None:
        self._closed = True
        self._subscriptions.clear()
        self.broker.close()
