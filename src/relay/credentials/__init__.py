"""Per-repository credential lookup.

Credentials are Kubernetes secrets annotated with the repository URL
prefixes they apply to. The CredentialResolver scans them to find the
username/token for a repository URL.
"""

from src.relay.credentials.cache import (
    CredentialCache,
    NoCredentialCache,
    TTLCredentialCache,
    create_credential_cache,
)
from src.relay.credentials.models import (
    KABANERO_ANNOTATION_PREFIX,
    TEKTON_ANNOTATION_PREFIX,
    CredentialRecord,
    ResolvedCredential,
    SecretDocument,
)
from src.relay.credentials.resolver import CredentialResolver, match_prefix
from src.relay.credentials.store import (
    KubernetesSecretStore,
    SecretStore,
    create_kubernetes_secret_store,
)

__all__ = [
    # Models
    "CredentialRecord",
    "KABANERO_ANNOTATION_PREFIX",
    "ResolvedCredential",
    "SecretDocument",
    "TEKTON_ANNOTATION_PREFIX",
    # Resolver
    "CredentialResolver",
    "match_prefix",
    # Stores
    "KubernetesSecretStore",
    "SecretStore",
    "create_kubernetes_secret_store",
    # Caching
    "CredentialCache",
    "NoCredentialCache",
    "TTLCredentialCache",
    "create_credential_cache",
]
