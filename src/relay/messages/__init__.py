"""Message transport between the webhook gateway and event consumers.

Models:
- ProviderDefinition, EventNode, EventDefinitions: static configuration
- load_event_definitions: read definitions from YAML

Providers:
- MessageProvider: abstract transport interface
- NATSProvider: NATS backend (providerType ``nats``)
- MemoryProvider: in-process loopback backend (providerType ``memory``)
- create_message_provider / MessageProviders: construction and lookup

Listeners:
- EventListenerGroup: one listen_and_serve() task per event source
"""

from src.relay.messages.listener import EventListenerGroup
from src.relay.messages.memory_provider import MemoryBroker, MemoryProvider
from src.relay.messages.models import (
    EventDefinitions,
    EventNode,
    ProviderDefinition,
    load_event_definitions,
    parse_duration,
    parse_event_definitions,
)
from src.relay.messages.nats_provider import NATSProvider
from src.relay.messages.provider import (
    MessageProvider,
    MessageProviders,
    ReceiverFunc,
    create_message_provider,
    provider_types,
    register_provider_type,
)

register_provider_type("nats", NATSProvider)
register_provider_type("memory", MemoryProvider)

__all__ = [
    # Models
    "EventDefinitions",
    "EventNode",
    "ProviderDefinition",
    "load_event_definitions",
    "parse_duration",
    "parse_event_definitions",
    # Providers
    "MemoryBroker",
    "MemoryProvider",
    "MessageProvider",
    "MessageProviders",
    "NATSProvider",
    "ReceiverFunc",
    "create_message_provider",
    "provider_types",
    "register_provider_type",
    # Listeners
    "EventListenerGroup",
]
