"""Exception hierarchy for the webhook relay.

All errors raised by the relay derive from RelayError so callers at the
HTTP boundary can catch them in one place. The hierarchy mirrors the three
core areas of the service:

- CredentialError: credential lookup against the secret store
- MessagingError: publish/subscribe through a message provider
- WebhookPayloadError / RepositoryFileError: webhook body handling and
  downloads from the repository host
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


# -----------------------------------------------------------------------------
# Credentials
# -----------------------------------------------------------------------------


class CredentialError(RelayError):
    """Base class for credential lookup failures."""


class CredentialNotFoundError(CredentialError):
    """Raised when no credential record matches a repository URL.

    Attributes:
        repository_url: The URL that was looked up.
        namespace: The namespace that was scanned.
    """

    def __init__(self, repository_url: str, namespace: str):
        self.repository_url = repository_url
        self.namespace = namespace
        super().__init__(
            f"Unable to find API token for url: {repository_url} "
            f"in namespace {namespace}"
        )


class CredentialDecodeError(CredentialError):
    """Raised when a credential record cannot be decoded.

    This covers malformed base64 in a matched record as well as raw
    secret objects that do not have the expected shape.

    Attributes:
        secret_name: Name of the offending secret, when known.
    """

    def __init__(
        self,
        message: str,
        secret_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.secret_name = secret_name
        super().__init__(message, original_error=original_error)


class SecretStoreError(CredentialError):
    """Raised when the secret store cannot list records."""


# -----------------------------------------------------------------------------
# Messaging
# -----------------------------------------------------------------------------


class MessagingError(RelayError):
    """Base class for message provider failures."""


class ProviderConfigError(MessagingError):
    """Raised for invalid provider or event node configuration."""


class TransportError(MessagingError):
    """Raised when the broker rejects or cannot carry a request.

    Attributes:
        node_name: Name of the event node involved, if any.
    """

    def __init__(
        self,
        message: str,
        node_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.node_name = node_name
        super().__init__(message, original_error=original_error)


class NotSubscribedError(MessagingError):
    """Raised when receive() is called for a source that was never subscribed.

    Attributes:
        node_name: Name of the event source.
    """

    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(
            f"No subscription for eventSource '{node_name}'. "
            "It should be defined and subscribed to."
        )


class ReceiveTimeoutError(MessagingError):
    """Raised when no message arrives within the provider timeout.

    Attributes:
        node_name: Name of the event source.
        timeout: The timeout in seconds that elapsed.
    """

    def __init__(self, node_name: str, timeout: float):
        self.node_name = node_name
        self.timeout = timeout
        super().__init__(
            f"No message received on '{node_name}' within {timeout}s"
        )


# -----------------------------------------------------------------------------
# Webhook and repository host
# -----------------------------------------------------------------------------


class WebhookPayloadError(RelayError):
    """Raised when a webhook body lacks a field required for an operation."""


class RepositoryFileError(RelayError):
    """Raised when a file cannot be downloaded from the repository host.

    Attributes:
        status_code: HTTP status code returned by the host, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        super().__init__(message, original_error=original_error)
