"""Application context: every long-lived collaborator, built once.

The context replaces process-wide globals. It is created during application
startup and handed to the HTTP layer; everything that needs a provider,
the resolver or the gateway gets it from here.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from src.relay.config import RelaySettings
from src.relay.credentials import (
    CredentialResolver,
    SecretStore,
    create_credential_cache,
    create_kubernetes_secret_store,
)
from src.relay.github import RepositoryFileFetcher
from src.relay.messages import (
    EventDefinitions,
    EventListenerGroup,
    EventNode,
    MessageProviders,
    ReceiverFunc,
    load_event_definitions,
)
from src.relay.metrics import RelayMetrics, get_metrics
from src.relay.webhook import WebhookGateway
from src.relay.webhook.models import EVENT_HEADER, Envelope


logger = logging.getLogger(__name__)


class LoggingReceiver:
    """Receiver that logs every message delivered to a listener.

    Used for event sources when no consumer is plugged in.
    """

    def __init__(self, node: EventNode, metrics: Optional[RelayMetrics] = None):
        self.node = node
        self.metrics = metrics

    def __call__(self, payload: bytes) -> None:
        if self.metrics is not None:
            self.metrics.record_received(self.node.name)
        try:
            envelope = Envelope.from_bytes(payload)
        except ValueError:
            envelope = None
        event_type = envelope.first_header(EVENT_HEADER) if envelope else ""
        logger.info(
            "Received message on eventSource %s: %d bytes",
            self.node.name,
            len(payload),
            extra={
                "source": self.node.name,
                "topic": self.node.topic,
                "event_type": event_type,
                "envelope": envelope is not None,
            },
        )


@dataclass
class AppContext:
    """Collaborators shared by all requests and listeners."""

    settings: RelaySettings
    definitions: EventDefinitions
    providers: MessageProviders
    resolver: CredentialResolver
    gateway: WebhookGateway
    files: RepositoryFileFetcher
    listeners: EventListenerGroup
    metrics: RelayMetrics = field(default_factory=get_metrics)

    @classmethod
    async def create(
        cls,
        settings: RelaySettings,
        secret_store: Optional[SecretStore] = None,
        definitions: Optional[EventDefinitions] = None,
        metrics: Optional[RelayMetrics] = None,
    ) -> "AppContext":
        """Build the context from settings.

        Args:
            settings: Validated relay settings.
            secret_store: Store to resolve credentials from. Defaults to the
                Kubernetes store configured by the settings.
            definitions: Event definitions. Defaults to loading
                settings.provider_config.
            metrics: Metrics sink. Defaults to the global instance.

        Raises:
            ProviderConfigError: For invalid event definitions.
            TransportError: If a provider cannot connect.
            SecretStoreError: If the cluster configuration cannot be loaded.
        """
        metrics = metrics or get_metrics()

        if definitions is None:
            definitions = load_event_definitions(settings.provider_config)

        if secret_store is None:
            secret_store = create_kubernetes_secret_store(
                master_url=settings.kube_master_url,
                kubeconfig=settings.kubeconfig or None,
            )

        resolver = CredentialResolver(
            store=secret_store,
            namespace=settings.namespace,
            cache=create_credential_cache(settings.credential_cache_ttl_seconds),
        )

        providers = await MessageProviders.from_definitions(definitions)

        if definitions.get_event_destination(settings.webhook_destination) is None:
            logger.error(
                "Unable to find an eventDestination with the name '%s'. "
                "Webhooks will not be published until it is defined.",
                settings.webhook_destination,
            )

        gateway = WebhookGateway(
            definitions=definitions,
            providers=providers,
            destination=settings.webhook_destination,
            metrics=metrics,
        )
        files = RepositoryFileFetcher(
            resolver=resolver,
            timeout=settings.github_api_timeout_seconds,
            metrics=metrics,
        )

        return cls(
            settings=settings,
            definitions=definitions,
            providers=providers,
            resolver=resolver,
            gateway=gateway,
            files=files,
            listeners=EventListenerGroup(providers),
            metrics=metrics,
        )

    def start_listeners(self, receiver: Optional[ReceiverFunc] = None) -> int:
        """Start one listener per event source.

        Args:
            receiver: Consumer for every source. Defaults to a LoggingReceiver
                per source.

        Returns:
            The number of listeners started.
        """
        if receiver is not None:
            return self.listeners.start_all(self.definitions, receiver)

        started = 0
        for node in self.definitions.event_sources:
            if self.listeners.start(node, LoggingReceiver(node, self.metrics)):
                started += 1
        return started

    async def close(self) -> None:
        """Stop listeners, then close providers."""
        await self.listeners.stop()
        await self.providers.close()
