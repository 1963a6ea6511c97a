"""Message provider and event node definitions.

Definitions are loaded once at startup from a YAML file::

    messageProviders:
    - name: nats-provider
      providerType: nats
      url: nats://127.0.0.1:4222
      timeout: 8760h
    eventDestinations:
    - name: github
      providerRef: nats-provider
      topic: github
    eventSources:
    - name: github-source
      providerRef: nats-provider
      topic: github

An event node is a destination or a source depending only on which list it
appears in.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.relay.errors import ProviderConfigError


logger = logging.getLogger(__name__)


DEFAULT_RECEIVE_TIMEOUT_SECONDS = 10.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Numbers are taken as seconds. Strings use the ``1h30m``/``500ms``
    notation; a bare numeric string is also taken as seconds.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class ProviderDefinition(BaseModel):
    """Static configuration for one message provider.

    Attributes:
        name: Name event nodes refer to via provider_ref.
        provider_type: Backend discriminator, e.g. ``nats``.
        url: Broker connection URL.
        timeout: Seconds receive() waits for a message.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    provider_type: str = Field(..., alias="providerType", min_length=1)
    url: str = ""
    timeout: float = DEFAULT_RECEIVE_TIMEOUT_SECONDS

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> float:
        """Accept seconds or a duration string; must be positive."""
        seconds = parse_duration(v)
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        return seconds


class EventNode(BaseModel):
    """A named binding of a logical endpoint to a transport topic."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    provider_ref: str = Field(..., alias="providerRef", min_length=1)


class EventDefinitions(BaseModel):
    """All providers and event nodes known to the relay."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message_providers: List[ProviderDefinition] = Field(
        default_factory=list, alias="messageProviders"
    )
    event_destinations: List[EventNode] = Field(
        default_factory=list, alias="eventDestinations"
    )
    event_sources: List[EventNode] = Field(
        default_factory=list, alias="eventSources"
    )

    def get_message_provider(self, name: str) -> Optional[ProviderDefinition]:
        for provider in self.message_providers:
            if provider.name == name:
                return provider
        return None

    def get_event_destination(self, name: str) -> Optional[EventNode]:
        for node in self.event_destinations:
            if node.name == name:
                return node
        return None

    def get_event_source(self, name: str) -> Optional[EventNode]:
        for node in self.event_sources:
            if node.name == name:
                return node
        return None

    def validate_references(self) -> None:
        """Check that every node refers to a defined provider.

        Raises:
            ProviderConfigError: For the first dangling provider_ref.
        """
        names = {provider.name for provider in self.message_providers}
        for node in [*self.event_destinations, *self.event_sources]:
            if node.provider_ref not in names:
                raise ProviderConfigError(
                    f"Event node '{node.name}' refers to undefined "
                    f"messageProvider '{node.provider_ref}'"
                )


def parse_event_definitions(data: Optional[Dict[str, Any]]) -> EventDefinitions:
    """Build EventDefinitions from an already parsed mapping.

    Raises:
        ProviderConfigError: If the mapping is invalid.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProviderConfigError(
            f"Event definitions must be a mapping, not {type(data).__name__}"
        )
    try:
        definitions = EventDefinitions.model_validate(data)
    except ValidationError as e:
        raise ProviderConfigError(
            f"Invalid event definitions: {e}", original_error=e
        ) from e
    definitions.validate_references()
    return definitions


def load_event_definitions(path: Union[str, Path]) -> EventDefinitions:
    """Load event definitions from a YAML file.

    A missing file is tolerated and yields empty definitions, so the relay
    can start before its definitions are deployed.

    Raises:
        ProviderConfigError: If the file cannot be parsed or is invalid.
    """
    path = Path(path)
    if not path.exists():
        logger.error("Event definitions file was not found: %s", path)
        return EventDefinitions()

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ProviderConfigError(
            f"Unable to parse event definitions {path}: {e}", original_error=e
        ) from e

    definitions = parse_event_definitions(data)
    logger.info(
        "Loaded %d message providers, %d destinations, %d sources from %s",
        len(definitions.message_providers),
        len(definitions.event_destinations),
        len(definitions.event_sources),
        path,
    )
    return definitions
