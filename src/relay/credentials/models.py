"""Credential models for repository API tokens.

A credential lives in a Kubernetes secret of the following shape::

    apiVersion: v1
    kind: Secret
    metadata:
      name: org-test-secret
      namespace: kabanero
      annotations:
        kabanero.io/git-0: https://github.example.com/org-test
        tekton.dev/git-1: https://github.com/other-org
    type: Opaque
    data:
      username: <base64 encoded user name>
      password: <base64 encoded token>

Raw secrets are decoded once at the store boundary into SecretDocument.
The resolver then derives a CredentialRecord from a matching document.
"""

import base64
import binascii
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from src.relay.errors import CredentialDecodeError


# Annotation key prefixes that carry URL patterns. Patterns from the first
# family are tested before patterns from the second.
KABANERO_ANNOTATION_PREFIX = "kabanero.io/git-"
TEKTON_ANNOTATION_PREFIX = "tekton.dev/git-"

USERNAME_KEY = "username"
PASSWORD_KEY = "password"


class SecretMetadata(BaseModel):
    """The subset of secret metadata the resolver needs."""

    name: str = Field(..., min_length=1)
    namespace: str = ""
    annotations: Dict[str, str] = Field(default_factory=dict)


class SecretDocument(BaseModel):
    """A secret as listed from the backing store, before base64 decoding.

    Attributes:
        metadata: Name, namespace and annotations of the secret.
        data: Secret data values, still base64 encoded.
    """

    metadata: SecretMetadata
    data: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "SecretDocument":
        """Decode a raw secret mapping into a SecretDocument.

        Null ``annotations`` or ``data`` sections (as returned by the
        Kubernetes API for secrets without them) are treated as empty.

        Raises:
            CredentialDecodeError: If the mapping does not have the shape of
                a secret.
        """
        try:
            metadata = dict(raw.get("metadata") or {})
            metadata["annotations"] = metadata.get("annotations") or {}
            return cls(metadata=metadata, data=raw.get("data") or {})
        except (AttributeError, TypeError, ValueError, ValidationError) as e:
            name = None
            if isinstance(raw, Mapping) and isinstance(raw.get("metadata"), Mapping):
                name = raw["metadata"].get("name")
            raise CredentialDecodeError(
                f"Malformed secret object: {e}",
                secret_name=name,
                original_error=e,
            ) from e

    @property
    def name(self) -> str:
        return self.metadata.name

    def url_patterns(self, prefix: str) -> List[str]:
        """Return the annotation values whose key starts with prefix."""
        return [
            value
            for key, value in self.metadata.annotations.items()
            if key.startswith(prefix)
        ]

    def has_credentials(self) -> bool:
        return USERNAME_KEY in self.data and PASSWORD_KEY in self.data


class CredentialRecord(BaseModel):
    """A decoded credential bound to a set of repository URL prefixes.

    Attributes:
        name: Secret name.
        namespace: Secret namespace.
        url_patterns: URL prefixes, first annotation family first.
        username: Decoded user name.
        token: Decoded API token.
    """

    name: str
    namespace: str
    url_patterns: List[str] = Field(default_factory=list)
    username: str
    token: str = Field(..., repr=False)

    @classmethod
    def from_document(cls, document: SecretDocument) -> "CredentialRecord":
        """Decode the username and token of a secret document.

        Raises:
            CredentialDecodeError: If either value is missing or is not
                valid base64 encoded UTF-8.
        """
        return cls(
            name=document.name,
            namespace=document.metadata.namespace,
            url_patterns=(
                document.url_patterns(KABANERO_ANNOTATION_PREFIX)
                + document.url_patterns(TEKTON_ANNOTATION_PREFIX)
            ),
            username=_decode_value(document, USERNAME_KEY),
            token=_decode_value(document, PASSWORD_KEY),
        )


class ResolvedCredential(BaseModel):
    """Result of a successful credential lookup."""

    username: str
    token: str = Field(..., repr=False)
    secret_name: str
    matched_pattern: Optional[str] = None


def _decode_value(document: SecretDocument, key: str) -> str:
    encoded = document.data.get(key)
    if encoded is None:
        raise CredentialDecodeError(
            f"Secret {document.name} has no '{key}' data",
            secret_name=document.name,
        )
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise CredentialDecodeError(
            f"Unable to decode '{key}' of secret {document.name}: {e}",
            secret_name=document.name,
            original_error=e,
        ) from e
