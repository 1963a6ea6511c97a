"""Download files from the repository a webhook came from.

Uses the GitHub contents API with basic authentication, where the username
and token come from the CredentialResolver. Both github.com and GitHub
Enterprise Server are supported; an enterprise webhook is recognized by its
``X-GitHub-Enterprise-Host`` header.

Requests are single attempt: there is no retry or backoff.
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, Optional, Tuple

import httpx
import yaml

from src.relay.credentials.models import ResolvedCredential
from src.relay.credentials.resolver import CredentialResolver
from src.relay.errors import (
    CredentialDecodeError,
    CredentialNotFoundError,
    RepositoryFileError,
    SecretStoreError,
    WebhookPayloadError,
)
from src.relay.metrics import RelayMetrics
from src.relay.webhook.handler import get_repository_info
from src.relay.webhook.models import (
    ENTERPRISE_HOST_HEADER,
    EVENT_HEADER,
    HeaderInput,
    normalize_headers,
)


logger = logging.getLogger(__name__)


GITHUB_API_URL = "https://api.github.com"


def api_url_for_host(enterprise_host: Optional[str]) -> str:
    """Return the REST API base URL for github.com or an enterprise host."""
    if not enterprise_host:
        return GITHUB_API_URL
    return f"https://{enterprise_host}/api/v3"


class RepositoryFileFetcher:
    """Fetches repository files through the GitHub contents API.

    Attributes:
        resolver: Resolves the credential for a repository URL.
        timeout: Request timeout in seconds.
        metrics: Optional metrics sink for credential lookups.

    Example:
        >>> fetcher = RepositoryFileFetcher(resolver)
        >>> content, found = await fetcher.download_yaml(headers, body, ".relay.yaml")
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        timeout: float = 30.0,
        metrics: Optional[RelayMetrics] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the fetcher.

        Args:
            resolver: Credential resolver for repository URLs.
            timeout: Request timeout in seconds.
            metrics: Optional metrics sink.
            transport: Optional httpx transport, e.g. a MockTransport in tests.
        """
        self.resolver = resolver
        self.timeout = timeout
        self.metrics = metrics
        self._transport = transport

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "webhook-relay/1.0",
        }

    async def download_file(
        self,
        owner: str,
        repository: str,
        path: str,
        ref: str,
        username: str,
        token: str,
        api_url: str = GITHUB_API_URL,
    ) -> Tuple[Optional[bytes], bool]:
        """Download one file.

        Args:
            owner: Repository owner.
            repository: Repository name.
            path: File path within the repository.
            ref: Commit SHA or branch; empty for the default branch.
            username: Basic auth user.
            token: Basic auth token.
            api_url: REST API base URL.

        Returns:
            ``(content, True)`` for an existing file, ``(None, False)`` when
            the file does not exist.

        Raises:
            RepositoryFileError: For any other response, for paths that are
                not files, or when the request cannot be made.
        """
        logger.debug(
            "Downloading %s/%s/%s at ref %s from %s",
            owner,
            repository,
            path,
            ref or "<default>",
            api_url,
        )
        params = {"ref": ref} if ref else None
        url = f"/repos/{owner}/{repository}/contents/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                base_url=api_url,
                auth=httpx.BasicAuth(username, token),
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RepositoryFileError(
                f"Unable to download {owner}/{repository}/{path}: {e}",
                original_error=e,
            ) from e

        if response.status_code == 404:
            return None, False
        if response.status_code != 200:
            raise RepositoryFileError(
                f"Unable to download {owner}/{repository}/{path}, "
                f"http error {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RepositoryFileError(
                f"Unable to download {owner}/{repository}/{path}: invalid response",
                status_code=response.status_code,
                original_error=e,
            ) from e
        if not isinstance(data, dict) or data.get("type") != "file":
            raise RepositoryFileError(
                f"Unable to download {owner}/{repository}/{path}: not a file",
                status_code=response.status_code,
            )
        content = data.get("content")
        if content is None:
            raise RepositoryFileError(
                f"Content for {owner}/{repository}/{path} is empty",
                status_code=response.status_code,
            )
        try:
            return base64.b64decode(content), True
        except (binascii.Error, ValueError) as e:
            raise RepositoryFileError(
                f"Unable to decode content of {owner}/{repository}/{path}: {e}",
                original_error=e,
            ) from e

    async def download_yaml(
        self,
        headers: HeaderInput,
        body: Dict[str, Any],
        file_name: str,
    ) -> Tuple[Optional[Any], bool]:
        """Download and parse a YAML file from the webhook's repository.

        The repository and ref are taken from the webhook body, the API host
        from the enterprise header, and the credential from the resolver.

        Returns:
            ``(parsed, True)`` for an existing file, ``(None, False)`` when
            the file does not exist.

        Raises:
            WebhookPayloadError: If the repository cannot be determined.
            CredentialError: If no usable credential is found.
            RepositoryFileError: If the download or YAML parsing fails.
        """
        normalized = normalize_headers(headers)
        event_type = (normalized.get(EVENT_HEADER) or [""])[0]
        enterprise_host = (normalized.get(ENTERPRISE_HOST_HEADER) or [""])[0]

        try:
            info = get_repository_info(body, event_type)
        except WebhookPayloadError as e:
            raise WebhookPayloadError(
                f"Unable to get repository owner, name, or html_url from "
                f"webhook message: {e.message}",
                original_error=e,
            ) from e

        credential = await self._resolve(info.html_url)

        content, found = await self.download_file(
            owner=info.owner,
            repository=info.name,
            path=file_name,
            ref=info.ref,
            username=credential.username,
            token=credential.token,
            api_url=api_url_for_host(enterprise_host),
        )
        if content is None:
            return None, found

        try:
            return yaml.safe_load(content), found
        except yaml.YAMLError as e:
            raise RepositoryFileError(
                f"Unable to parse {file_name} of {info.full_name} as YAML: {e}",
                original_error=e,
            ) from e

    async def _resolve(self, html_url: str) -> ResolvedCredential:
        try:
            credential = await asyncio.to_thread(self.resolver.resolve, html_url)
        except CredentialNotFoundError:
            self._record_lookup("not_found")
            raise
        except CredentialDecodeError:
            self._record_lookup("decode_error")
            raise
        except SecretStoreError:
            self._record_lookup("backend_error")
            raise
        self._record_lookup("found")
        return credential

    def _record_lookup(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_credential_lookup(result)
