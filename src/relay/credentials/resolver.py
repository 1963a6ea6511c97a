"""Resolve the API credential for a repository URL.

The resolver scans every secret in its namespace. A secret applies to a
repository when one of its URL annotations is a prefix of the repository
URL. Annotations with the ``kabanero.io/git-`` prefix are tested before
annotations with the ``tekton.dev/git-`` prefix.

Exactly the first secret, in store enumeration order, whose URL patterns
contain a prefix of the queried URL is returned. When several secrets
match, which one comes first is up to the backing store.
"""

import logging
from typing import List, Optional, Tuple

from src.relay.credentials.cache import CredentialCache, NoCredentialCache
from src.relay.credentials.models import (
    KABANERO_ANNOTATION_PREFIX,
    TEKTON_ANNOTATION_PREFIX,
    CredentialRecord,
    ResolvedCredential,
    SecretDocument,
)
from src.relay.credentials.store import SecretStore
from src.relay.errors import CredentialNotFoundError


logger = logging.getLogger(__name__)


def match_prefix(value: str, patterns: List[str]) -> Tuple[bool, str]:
    """Find the first pattern that is a prefix of value.

    Returns:
        (True, pattern) for the first matching pattern, (False, "") otherwise.
    """
    for pattern in patterns:
        if value.startswith(pattern):
            return True, pattern
    return False, ""


class CredentialResolver:
    """Finds the username/token pair for a repository URL.

    Lookups are synchronous and may block on the secret store. Async
    callers should run resolve() in a worker thread.

    Attributes:
        store: Where secrets are listed from.
        namespace: Namespace holding the credential secrets.
        cache: Caching policy for secret listings.
    """

    def __init__(
        self,
        store: SecretStore,
        namespace: str,
        cache: Optional[CredentialCache] = None,
    ):
        self.store = store
        self.namespace = namespace
        self.cache = cache or NoCredentialCache()

    def resolve(self, repository_url: str) -> ResolvedCredential:
        """Find the credential whose URL pattern prefixes repository_url.

        Args:
            repository_url: e.g. ``https://github.com/org/repo``.

        Returns:
            The decoded username and token, and the secret they came from.

        Raises:
            CredentialNotFoundError: If no secret matches.
            CredentialDecodeError: If the matching secret cannot be decoded.
            SecretStoreError: If the secrets cannot be listed.
        """
        logger.debug(
            "Resolving API token for %s in namespace %s",
            repository_url,
            self.namespace,
        )
        documents = self.cache.get_or_load(self.namespace, self.store.list_secrets)

        for document in documents:
            matched, pattern = self._match(document, repository_url)
            if not matched:
                continue
            if not document.has_credentials():
                logger.warning(
                    "Secret %s matches %s but has no username/password data, skipping",
                    document.name,
                    repository_url,
                )
                continue

            record = CredentialRecord.from_document(document)
            logger.info(
                "Resolved API token for %s from secret %s",
                repository_url,
                record.name,
                extra={"matched_pattern": pattern},
            )
            return ResolvedCredential(
                username=record.username,
                token=record.token,
                secret_name=record.name,
                matched_pattern=pattern,
            )

        raise CredentialNotFoundError(repository_url, self.namespace)

    def invalidate(self) -> None:
        """Forget any cached listing for this resolver's namespace."""
        self.cache.invalidate(self.namespace)

    @staticmethod
    def _match(document: SecretDocument, repository_url: str) -> Tuple[bool, str]:
        matched, pattern = match_prefix(
            repository_url,
            document.url_patterns(KABANERO_ANNOTATION_PREFIX),
        )
        if not matched:
            matched, pattern = match_prefix(
                repository_url,
                document.url_patterns(TEKTON_ANNOTATION_PREFIX),
            )
        return matched, pattern
