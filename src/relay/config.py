"""Relay configuration using pydantic-settings.

This module defines the RelaySettings class that reads configuration from
environment variables with the RELAY_ prefix. Every field has a default so
the relay starts inside a cluster without extra configuration.
"""

import logging

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


TLS_PORT = 9443
PLAIN_PORT = 9080


class RelaySettings(BaseSettings):
    """Webhook relay configuration from environment variables.

    All environment variables are prefixed with RELAY_ (e.g., RELAY_NAMESPACE).
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Kubernetes Configuration
    # -------------------------------------------------------------------------
    # Namespace holding the credential secrets; KUBE_NAMESPACE is also read
    namespace: str = Field(
        default="kabanero",
        validation_alias=AliasChoices("RELAY_NAMESPACE", "KUBE_NAMESPACE"),
    )

    # API server URL; empty means running inside the cluster
    kube_master_url: str = ""

    # Path to the kubeconfig file, used together with kube_master_url
    kubeconfig: str = ""

    # Seconds a secret listing may be reused; 0 re-lists on every lookup
    credential_cache_ttl_seconds: float = 0.0

    # -------------------------------------------------------------------------
    # Messaging Configuration
    # -------------------------------------------------------------------------
    # Path of the event definitions YAML file
    provider_config: str = "/etc/relay/eventDefinitions.yaml"

    # Name of the eventDestination webhooks are published to
    webhook_destination: str = "github"

    # Start a listener for every eventSource at startup
    start_listeners: bool = True

    # -------------------------------------------------------------------------
    # Repository Host Configuration
    # -------------------------------------------------------------------------
    # Timeout in seconds for contents API requests
    github_api_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    # Serve plain HTTP instead of TLS
    disable_tls: bool = False

    tls_cert_path: str = "/etc/tls/tls.crt"
    tls_key_path: str = "/etc/tls/tls.key"

    # Host address to bind the server to
    host: str = "0.0.0.0"

    # Port number for the server; 0 picks 9443 with TLS and 9080 without
    port: int = 0

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("namespace", "webhook_destination", "provider_config")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that required strings are not empty."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("kube_master_url")
    @classmethod
    def validate_master_url(cls, v: str) -> str:
        """Validate that a master URL, when given, is an http(s) URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("kube_master_url must start with http:// or https://")
        return v

    @field_validator("credential_cache_ttl_seconds")
    @classmethod
    def validate_cache_ttl(cls, v: float) -> float:
        """Validate that the cache TTL is not negative."""
        if v < 0:
            raise ValueError("credential_cache_ttl_seconds cannot be negative")
        return v

    @field_validator("github_api_timeout_seconds")
    @classmethod
    def validate_api_timeout(cls, v: float) -> float:
        """Validate that the API timeout is positive."""
        if v <= 0:
            raise ValueError("github_api_timeout_seconds must be positive")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is 0 or in valid range."""
        if not 0 <= v <= 65535:
            raise ValueError("port must be between 0 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a standard logging level name."""
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def listen_port(self) -> int:
        """The port to serve on, resolving 0 to the TLS or plain default."""
        if self.port:
            return self.port
        return PLAIN_PORT if self.disable_tls else TLS_PORT


def get_settings() -> RelaySettings:
    """Create and return RelaySettings instance.

    Raises:
        pydantic.ValidationError: If a value is invalid.
    """
    return RelaySettings()
