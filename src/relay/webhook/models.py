"""Webhook envelope and repository models.

The relay does not interpret webhook bodies beyond what is needed to locate
the originating repository. It wraps the request into an Envelope and
publishes that as a single message.

Envelope wire format::

    {
      "header": {"X-Github-Event": ["push"], ...},
      "body": { ...original JSON body... }
    }
"""

import json
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from pydantic import BaseModel, Field


HEADER = "header"
BODY = "body"

EVENT_HEADER = "X-Github-Event"
ENTERPRISE_HOST_HEADER = "X-Github-Enterprise-Host"

HeaderInput = Union[Mapping[str, Any], Iterable[Tuple[str, str]]]


class WebhookEventType(str, Enum):
    """GitHub event types the relay extracts a commit ref from.

    Attributes:
        PUSH: Ref is the ``after`` SHA of the push.
        PULL_REQUEST: Ref is ``pull_request.head.sha``.
    """

    PUSH = "push"
    PULL_REQUEST = "pull_request"


def canonical_header_key(key: str) -> str:
    """Return the canonical MIME form of a header name.

    The first letter and every letter after a hyphen are upper-cased, the
    rest lower-cased: ``x-github-event`` becomes ``X-Github-Event``.
    """
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def normalize_headers(headers: HeaderInput) -> Dict[str, List[str]]:
    """Group headers into canonical name -> list of values.

    Accepts a mapping (values may be strings or lists of strings) or an
    iterable of ``(name, value)`` pairs, such as Starlette's
    ``request.headers.items()``, which keeps repeated headers.
    """
    items: Iterable[Tuple[str, Any]]
    if isinstance(headers, Mapping):
        items = headers.items()
    else:
        items = headers

    normalized: Dict[str, List[str]] = {}
    for key, value in items:
        values = normalized.setdefault(canonical_header_key(key), [])
        if isinstance(value, (list, tuple)):
            values.extend(str(v) for v in value)
        else:
            values.append(str(value))
    return normalized


class Envelope(BaseModel):
    """A webhook request as published to the message transport.

    Attributes:
        header: Canonical header names to their values.
        body: The parsed JSON body of the request.
    """

    header: Dict[str, List[str]] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_request(cls, headers: HeaderInput, body: Dict[str, Any]) -> "Envelope":
        return cls(header=normalize_headers(headers), body=body)

    def first_header(self, name: str) -> str:
        """Return the first value of a header, or an empty string."""
        values = self.header.get(canonical_header_key(name)) or []
        return values[0] if values else ""

    def to_bytes(self) -> bytes:
        return json.dumps({HEADER: self.header, BODY: self.body}).encode("utf-8")

    @classmethod
    def from_bytes(cls, payload: bytes) -> "Envelope":
        """Parse a published envelope.

        Raises:
            ValueError: If the payload is not a JSON envelope object.
        """
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError(f"Envelope must be a JSON object, not {type(data).__name__}")
        return cls(header=data.get(HEADER) or {}, body=data.get(BODY) or {})


class RepositoryInfo(BaseModel):
    """The repository a webhook originated from.

    Attributes:
        owner: Owner login (user or organization).
        name: Repository name without owner.
        html_url: Browser URL of the repository; used for credential lookup.
        ref: Commit SHA for push/pull_request events, empty otherwise.
    """

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    html_url: str = Field(..., min_length=1)
    ref: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"
