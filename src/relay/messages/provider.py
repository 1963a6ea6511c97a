"""Transport-agnostic message provider interface.

A MessageProvider moves opaque byte payloads between the relay and its
consumers. It supports two consumption modes on the same connection:

- Pull: subscribe() once, then receive() repeatedly, each call bounded by
  the provider timeout.
- Push: listen_and_serve() runs until stopped, calling a receiver for every
  message in delivery order.

Concrete backends are registered by provider type and built with
create_message_provider(). MessageProviders owns one provider per
definition for the lifetime of the application.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Type, Union

from src.relay.errors import ProviderConfigError
from src.relay.messages.models import EventDefinitions, EventNode, ProviderDefinition


logger = logging.getLogger(__name__)


ReceiverFunc = Callable[[bytes], Union[None, Awaitable[None]]]


class MessageProvider(ABC):
    """Abstract base class for message transport backends.

    Implementations share one broker connection between all callers and
    must tolerate concurrent send()/receive() calls from different tasks.

    Attributes:
        definition: The provider definition this instance was built from.
    """

    def __init__(self, definition: ProviderDefinition):
        self.definition = definition

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def timeout(self) -> float:
        return self.definition.timeout

    @abstractmethod
    async def connect(self) -> None:
        """Open the broker connection.

        Raises:
            TransportError: If the broker cannot be reached.
        """
        pass

    @abstractmethod
    async def send(
        self,
        node: EventNode,
        payload: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Publish payload to the node's topic.

        Returns only after the broker acknowledged the publish with a round
        trip.

        Raises:
            TransportError: If the publish or the round trip fails.
        """
        pass

    @abstractmethod
    async def subscribe(self, node: EventNode) -> None:
        """Create a synchronous subscription for the node, keyed by its name.

        Raises:
            TransportError: If the broker cannot register the subscription.
        """
        pass

    @abstractmethod
    async def receive(self, node: EventNode) -> bytes:
        """Wait for the next message on a subscribed node.

        Raises:
            NotSubscribedError: If subscribe() was not called for the node.
            ReceiveTimeoutError: If nothing arrives within the timeout.
        """
        pass

    @abstractmethod
    async def listen_and_serve(
        self,
        node: EventNode,
        receiver: ReceiverFunc,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Deliver every message on the node's topic to receiver.

        Messages are handled one at a time in delivery order. Returns when
        the subscription is closed or when stop is set, after unsubscribing
        and draining. Set-up failures are logged and end the call.
        """
        pass

    async def close(self) -> None:
        """Close the broker connection. The default does nothing."""
        pass

    @property
    def is_connected(self) -> bool:
        return True


async def deliver(receiver: ReceiverFunc, node: EventNode, payload: bytes) -> None:
    """Call receiver with payload, awaiting it if it returns an awaitable.

    Receiver failures are logged so that one bad message does not end a
    listener.
    """
    try:
        result = receiver(payload)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(
            "Receiver failed for message on %s: %s",
            node.name,
            str(e),
            extra={"node": node.name, "topic": node.topic, "error": str(e)},
        )


_PROVIDER_TYPES: Dict[str, Type[MessageProvider]] = {}


def register_provider_type(provider_type: str, cls: Type[MessageProvider]) -> None:
    """Make a backend available to create_message_provider()."""
    _PROVIDER_TYPES[provider_type] = cls


def provider_types() -> List[str]:
    return sorted(_PROVIDER_TYPES)


async def create_message_provider(definition: ProviderDefinition) -> MessageProvider:
    """Build and connect the backend for a provider definition.

    Raises:
        ProviderConfigError: If the provider type is unknown.
        TransportError: If the connection fails.
    """
    cls = _PROVIDER_TYPES.get(definition.provider_type)
    if cls is None:
        raise ProviderConfigError(
            f"Unsupported providerType '{definition.provider_type}' for "
            f"messageProvider '{definition.name}'. "
            f"Supported: {', '.join(provider_types())}"
        )
    provider = cls(definition)
    await provider.connect()
    logger.info(
        "Connected message provider %s (%s) to %s",
        definition.name,
        definition.provider_type,
        definition.url or "<in-process>",
    )
    return provider


class MessageProviders:
    """The connected providers of an application, looked up by name.

    Example:
        >>> providers = await MessageProviders.from_definitions(definitions)
        >>> provider = providers.get("nats-provider")
        >>> await providers.close()
    """

    def __init__(self, providers: Optional[Dict[str, MessageProvider]] = None):
        self._providers: Dict[str, MessageProvider] = dict(providers or {})

    @classmethod
    async def from_definitions(cls, definitions: EventDefinitions) -> "MessageProviders":
        """Connect one provider per definition.

        Providers connected before a failure are closed again before the
        error propagates.
        """
        providers = cls()
        try:
            for definition in definitions.message_providers:
                providers.add(await create_message_provider(definition))
        except Exception:
            await providers.close()
            raise
        return providers

    def add(self, provider: MessageProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> Optional[MessageProvider]:
        return self._providers.get(name)

    def names(self) -> List[str]:
        return list(self._providers)

    def all_connected(self) -> bool:
        return all(provider.is_connected for provider in self._providers.values())

    async def close(self) -> None:
        """Close every provider; failures are logged and do not stop the rest."""
        for name, provider in list(self._providers.items()):
            try:
                await provider.close()
            except Exception as e:
                logger.error("Failed to close message provider %s: %s", name, str(e))
        self._providers.clear()
