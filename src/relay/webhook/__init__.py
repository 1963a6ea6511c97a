"""GitHub webhook intake for the relay.

Inbound webhooks are wrapped into an Envelope (headers + JSON body) and
published to the destination event node. Signature validation, when
needed, is expected in front of this service.
"""

from .handler import (
    DEFAULT_WEBHOOK_DESTINATION,
    WebhookGateway,
    extract_ref,
    get_repository_info,
)
from .models import Envelope, RepositoryInfo, WebhookEventType, normalize_headers

__all__ = [
    "DEFAULT_WEBHOOK_DESTINATION",
    "Envelope",
    "RepositoryInfo",
    "WebhookEventType",
    "WebhookGateway",
    "extract_ref",
    "get_repository_info",
    "normalize_headers",
]
