"""Webhook gateway: from HTTP request to published envelope.

The gateway wraps the headers and JSON body of every inbound webhook into
an Envelope and publishes it, once, to the configured destination event
node. Publishing is best effort: failures are logged and counted but never
reported back to the webhook sender, which always gets ``202 Accepted``.

It also extracts the originating repository from GitHub payloads so that
files can be fetched from it with the right credentials.

GitHub payload fields used (push event)::

    {
      "after": "<sha>",
      "repository": {
        "name": "repo-name",
        "owner": {"login": "owner-name"},
        "html_url": "https://github.com/owner-name/repo-name"
      }
    }

For pull_request events the ref comes from ``pull_request.head.sha``.
"""

import logging
import time
from typing import Any, Dict, Optional

from src.relay.errors import RelayError, WebhookPayloadError
from src.relay.messages.models import EventDefinitions
from src.relay.messages.provider import MessageProviders
from src.relay.metrics import RelayMetrics
from src.relay.webhook.models import (
    EVENT_HEADER,
    Envelope,
    HeaderInput,
    RepositoryInfo,
    WebhookEventType,
)


logger = logging.getLogger(__name__)


DEFAULT_WEBHOOK_DESTINATION = "github"


def _require(mapping: Dict[str, Any], key: str, expected: type, context: str) -> Any:
    value = mapping.get(key)
    if value is None:
        raise WebhookPayloadError(f"Unable to find {context} in webhook message")
    if not isinstance(value, expected):
        raise WebhookPayloadError(
            f"{context} in webhook message is of type {type(value).__name__}, "
            f"not {expected.__name__}"
        )
    return value


def extract_ref(body: Dict[str, Any], event_type: str) -> str:
    """Return the commit SHA a webhook refers to.

    Args:
        body: Parsed webhook body.
        event_type: Value of the ``X-GitHub-Event`` header.

    Returns:
        ``after`` for push events, ``pull_request.head.sha`` for pull
        request events, and an empty string for any other event.

    Raises:
        WebhookPayloadError: If a push or pull_request body lacks the field.
    """
    if event_type == WebhookEventType.PUSH.value:
        return _require(body, "after", str, "after")
    if event_type == WebhookEventType.PULL_REQUEST.value:
        pull_request = _require(body, "pull_request", dict, "pull_request")
        head = _require(pull_request, "head", dict, "pull_request.head")
        return _require(head, "sha", str, "pull_request.head.sha")
    return ""


def get_repository_info(body: Dict[str, Any], event_type: str) -> RepositoryInfo:
    """Extract owner, name, html_url and ref of the originating repository.

    Raises:
        WebhookPayloadError: If a required field is missing or ill-typed.
    """
    ref = extract_ref(body, event_type)
    repository = _require(body, "repository", dict, "repository")
    name = _require(repository, "name", str, "repository.name")
    owner = _require(repository, "owner", dict, "repository.owner")
    login = _require(owner, "login", str, "repository.owner.login")
    html_url = _require(repository, "html_url", str, "repository.html_url")

    if not (name and login and html_url):
        raise WebhookPayloadError("Webhook message repository fields must not be empty")

    return RepositoryInfo(owner=login, name=name, html_url=html_url, ref=ref)


class WebhookGateway:
    """Publishes inbound webhooks to the destination event node.

    The gateway holds no per-request state; one instance serves all
    requests concurrently.

    Attributes:
        definitions: Event definitions with the destination node.
        providers: Connected providers, looked up by the node's provider_ref.
        destination: Name of the destination event node.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        definitions: EventDefinitions,
        providers: MessageProviders,
        destination: str = DEFAULT_WEBHOOK_DESTINATION,
        metrics: Optional[RelayMetrics] = None,
    ) -> None:
        self.definitions = definitions
        self.providers = providers
        self.destination = destination
        self.metrics = metrics

    def build_envelope(self, headers: HeaderInput, body: Dict[str, Any]) -> Envelope:
        return Envelope.from_request(headers, body)

    async def publish(self, headers: HeaderInput, body: Dict[str, Any]) -> bool:
        """Publish a webhook request as one envelope.

        Never raises for publishing problems; they are logged instead.

        Args:
            headers: Request headers.
            body: Parsed JSON body.

        Returns:
            True if the broker acknowledged the envelope, False otherwise.
        """
        envelope = self.build_envelope(headers, body)
        logger.info(
            "Received webhook event %s",
            envelope.first_header(EVENT_HEADER) or "<unknown>",
            extra={"destination": self.destination},
        )

        node = self.definitions.get_event_destination(self.destination)
        if node is None:
            logger.error(
                "Unable to find an eventDestination with the name '%s'. "
                "Verify that it has been defined.",
                self.destination,
            )
            self._record_publish(False)
            return False

        provider = self.providers.get(node.provider_ref)
        if provider is None:
            logger.error(
                "Unable to find a messageProvider with the name '%s'. "
                "Verify that it has been defined.",
                node.provider_ref,
            )
            self._record_publish(False)
            return False

        started = time.monotonic()
        try:
            await provider.send(node, envelope.to_bytes())
        except RelayError as e:
            logger.error(
                "Unable to send webhook message: %s",
                e.message,
                extra={"destination": node.name, "topic": node.topic},
            )
            self._record_publish(False, time.monotonic() - started)
            return False
        except Exception as e:
            logger.exception("Unexpected error publishing webhook message: %s", e)
            self._record_publish(False, time.monotonic() - started)
            return False

        self._record_publish(True, time.monotonic() - started)
        logger.debug("Published webhook envelope to %s", node.topic)
        return True

    def _record_publish(self, success: bool, duration: Optional[float] = None) -> None:
        if self.metrics is not None:
            self.metrics.record_publish(self.destination, success, duration)
