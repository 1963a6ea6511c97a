"""Repository host access for the relay.

Downloads files from the repository a webhook originated from, using the
credential the CredentialResolver finds for the repository URL.
"""

from src.relay.github.client import (
    GITHUB_API_URL,
    RepositoryFileFetcher,
    api_url_for_host,
)

__all__ = [
    "GITHUB_API_URL",
    "RepositoryFileFetcher",
    "api_url_for_host",
]
