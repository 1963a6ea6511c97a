"""Unit tests for repository file download.

The contents API is served by an httpx.MockTransport so request URLs,
authentication and status handling can be checked without network access.
"""

import asyncio
import base64
from typing import Any, Dict, List

import httpx
import pytest
from prometheus_client import CollectorRegistry

from src.relay.credentials import CredentialResolver, SecretDocument
from src.relay.errors import (
    CredentialNotFoundError,
    RepositoryFileError,
    WebhookPayloadError,
)
from src.relay.github import GITHUB_API_URL, RepositoryFileFetcher, api_url_for_host
from src.relay.metrics import RelayMetrics


def run_async(coro):
    return asyncio.run(coro)


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class ListStore:
    def __init__(self, documents: List[SecretDocument]):
        self.documents = documents

    def list_secrets(self, namespace: str) -> List[SecretDocument]:
        return self.documents


def make_resolver(pattern: str = "https://github.com/org") -> CredentialResolver:
    document = SecretDocument.from_raw(
        {
            "metadata": {"name": "org-secret", "annotations": {"kabanero.io/git-0": pattern}},
            "data": {"username": b64("bot"), "password": b64("tok")},
        }
    )
    return CredentialResolver(ListStore([document]), "kabanero")


def file_response(text: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={"type": "file", "encoding": "base64", "content": b64(text)},
    )


def push_body(html_url: str = "https://github.com/org/repo") -> Dict[str, Any]:
    return {
        "after": "a1b2c3",
        "repository": {
            "name": "repo",
            "owner": {"login": "org"},
            "html_url": html_url,
        },
    }


class RecordingHandler:
    """MockTransport handler that records requests and replies with a fixed response."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


class TestApiUrl:
    def test_github_com(self):
        assert api_url_for_host("") == GITHUB_API_URL
        assert api_url_for_host(None) == "https://api.github.com"

    def test_enterprise_host(self):
        assert api_url_for_host("github.example.com") == "https://github.example.com/api/v3"


class TestDownloadFile:
    def test_downloads_and_decodes_file(self):
        handler = RecordingHandler(file_response("hello: world\n"))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        content, found = run_async(
            fetcher.download_file("org", "repo", ".relay.yaml", "abc", "bot", "tok")
        )

        assert (content, found) == (b"hello: world\n", True)
        request = handler.requests[0]
        assert request.url.path == "/repos/org/repo/contents/.relay.yaml"
        assert request.url.params["ref"] == "abc"
        assert request.headers["Authorization"] == "Basic " + b64("bot:tok")

    def test_empty_ref_is_omitted(self):
        handler = RecordingHandler(file_response("x"))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        run_async(fetcher.download_file("org", "repo", "f", "", "bot", "tok"))

        assert "ref" not in handler.requests[0].url.params

    def test_not_found(self):
        handler = RecordingHandler(httpx.Response(404, json={"message": "Not Found"}))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        content, found = run_async(
            fetcher.download_file("org", "repo", "missing.yaml", "abc", "bot", "tok")
        )

        assert (content, found) == (None, False)

    @pytest.mark.parametrize("status", [401, 403, 500])
    def test_error_status_raises(self, status):
        handler = RecordingHandler(httpx.Response(status, json={}))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        with pytest.raises(RepositoryFileError) as exc_info:
            run_async(fetcher.download_file("org", "repo", "f", "abc", "bot", "tok"))

        assert exc_info.value.status_code == status

    def test_directory_raises(self):
        handler = RecordingHandler(httpx.Response(200, json=[{"type": "file", "name": "a"}]))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        with pytest.raises(RepositoryFileError):
            run_async(fetcher.download_file("org", "repo", "dir", "abc", "bot", "tok"))

    def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        with pytest.raises(RepositoryFileError):
            run_async(fetcher.download_file("org", "repo", "f", "abc", "bot", "tok"))


class TestDownloadYaml:
    def test_resolves_credential_and_parses_yaml(self):
        handler = RecordingHandler(file_response("triggers:\n- name: build\n"))
        metrics = RelayMetrics(registry=CollectorRegistry())
        fetcher = RepositoryFileFetcher(
            make_resolver(),
            metrics=metrics,
            transport=httpx.MockTransport(handler),
        )

        parsed, found = run_async(
            fetcher.download_yaml({"X-GitHub-Event": "push"}, push_body(), ".relay.yaml")
        )

        assert found is True
        assert parsed == {"triggers": [{"name": "build"}]}
        request = handler.requests[0]
        assert request.url.host == "api.github.com"
        assert request.url.params["ref"] == "a1b2c3"
        assert request.headers["Authorization"] == "Basic " + b64("bot:tok")
        assert metrics.registry.get_sample_value(
            "relay_credential_lookups_total", {"result": "found"}
        ) == 1

    def test_enterprise_host_header_selects_api(self):
        handler = RecordingHandler(file_response("a: 1"))
        fetcher = RepositoryFileFetcher(
            make_resolver("https://github.example.com/org"),
            transport=httpx.MockTransport(handler),
        )

        run_async(
            fetcher.download_yaml(
                {
                    "X-GitHub-Event": "push",
                    "X-GitHub-Enterprise-Host": "github.example.com",
                },
                push_body("https://github.example.com/org/repo"),
                ".relay.yaml",
            )
        )

        assert str(handler.requests[0].url).startswith(
            "https://github.example.com/api/v3/repos/org/repo/contents/.relay.yaml"
        )

    def test_missing_file(self):
        handler = RecordingHandler(httpx.Response(404))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        assert run_async(
            fetcher.download_yaml({"X-GitHub-Event": "push"}, push_body(), "absent.yaml")
        ) == (None, False)

    def test_no_credential(self):
        handler = RecordingHandler(file_response("a: 1"))
        metrics = RelayMetrics(registry=CollectorRegistry())
        fetcher = RepositoryFileFetcher(
            make_resolver("https://gitlab.com"),
            metrics=metrics,
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(CredentialNotFoundError):
            run_async(fetcher.download_yaml({"X-GitHub-Event": "push"}, push_body(), "f.yaml"))

        assert handler.requests == []
        assert metrics.registry.get_sample_value(
            "relay_credential_lookups_total", {"result": "not_found"}
        ) == 1

    def test_missing_repository_raises(self):
        fetcher = RepositoryFileFetcher(make_resolver())

        with pytest.raises(WebhookPayloadError):
            run_async(fetcher.download_yaml({"X-GitHub-Event": "push"}, {"after": "x"}, "f.yaml"))

    def test_invalid_yaml_raises(self):
        handler = RecordingHandler(file_response("a: [unclosed"))
        fetcher = RepositoryFileFetcher(make_resolver(), transport=httpx.MockTransport(handler))

        with pytest.raises(RepositoryFileError):
            run_async(fetcher.download_yaml({"X-GitHub-Event": "push"}, push_body(), "f.yaml"))
