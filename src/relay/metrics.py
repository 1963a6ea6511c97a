"""Prometheus metrics for relay observability.

Metrics are exposed at the ``/metrics`` endpoint in Prometheus format.

Metrics Defined:
- relay_webhook_requests_total: Counter of inbound webhooks by outcome
- relay_messages_published_total: Counter of envelopes published by destination
- relay_messages_publish_failed_total: Counter of failed publishes by destination
- relay_messages_received_total: Counter of messages delivered to listeners
- relay_credential_lookups_total: Counter of credential lookups by result
- relay_publish_duration_seconds: Histogram of publish round-trip time
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


logger = logging.getLogger(__name__)


# Publish round trips are network bound; buckets from 1ms to 10s
DEFAULT_PUBLISH_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.05,
    0.1,
    0.5,
    1.0,
    5.0,
    10.0,
)


class RelayMetrics:
    """Container for all relay Prometheus metrics.

    Supports custom registries so tests can create isolated instances.

    Example:
        >>> metrics = RelayMetrics(registry=CollectorRegistry())
        >>> metrics.record_webhook("accepted")
        >>> metrics.record_publish("github", success=True, duration_seconds=0.01)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize relay metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.webhook_requests_total = Counter(
            "relay_webhook_requests_total",
            "Total number of webhook requests received",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.messages_published_total = Counter(
            "relay_messages_published_total",
            "Total number of envelopes published to a destination",
            labelnames=["destination"],
            registry=self.registry,
        )

        self.messages_publish_failed_total = Counter(
            "relay_messages_publish_failed_total",
            "Total number of envelopes that could not be published",
            labelnames=["destination"],
            registry=self.registry,
        )

        self.messages_received_total = Counter(
            "relay_messages_received_total",
            "Total number of messages delivered to listeners",
            labelnames=["source"],
            registry=self.registry,
        )

        self.credential_lookups_total = Counter(
            "relay_credential_lookups_total",
            "Total number of repository credential lookups",
            labelnames=["result"],
            registry=self.registry,
        )

        self.publish_duration_seconds = Histogram(
            "relay_publish_duration_seconds",
            "Time spent publishing an envelope, including the broker round trip",
            labelnames=["destination"],
            buckets=DEFAULT_PUBLISH_BUCKETS,
            registry=self.registry,
        )

    def record_webhook(self, outcome: str) -> None:
        """Record an inbound webhook.

        Args:
            outcome: ``accepted`` or ``rejected``.
        """
        self.webhook_requests_total.labels(outcome=outcome).inc()

    def record_publish(
        self,
        destination: str,
        success: bool,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record a publish attempt to a destination."""
        if success:
            self.messages_published_total.labels(destination=destination).inc()
        else:
            self.messages_publish_failed_total.labels(destination=destination).inc()
        if duration_seconds is not None:
            self.publish_duration_seconds.labels(destination=destination).observe(
                duration_seconds
            )

    def record_received(self, source: str) -> None:
        self.messages_received_total.labels(source=source).inc()

    def record_credential_lookup(self, result: str) -> None:
        """Record a credential lookup.

        Args:
            result: ``found``, ``not_found``, ``decode_error`` or ``backend_error``.
        """
        self.credential_lookups_total.labels(result=result).inc()


_default_metrics: Optional[RelayMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> RelayMetrics:
    """Get the global metrics instance, or a new one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return RelayMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = RelayMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text format output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)
