"""Unit tests for credential lookup.

Tests secret decoding at the store boundary, prefix matching across the
two annotation families, error handling in the resolver, the Kubernetes
secret store and the listing cache policies.
"""

import base64
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from src.relay.credentials import (
    CredentialRecord,
    CredentialResolver,
    KubernetesSecretStore,
    NoCredentialCache,
    SecretDocument,
    TTLCredentialCache,
    create_credential_cache,
    match_prefix,
)
from src.relay.errors import (
    CredentialDecodeError,
    CredentialNotFoundError,
    SecretStoreError,
)


NAMESPACE = "kabanero"


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def make_secret(
    name: str,
    annotations: Optional[Dict[str, str]] = None,
    username: Optional[str] = "user",
    password: Optional[str] = "token",
) -> SecretDocument:
    data = {}
    if username is not None:
        data["username"] = b64(username)
    if password is not None:
        data["password"] = b64(password)
    return SecretDocument.from_raw(
        {
            "metadata": {
                "name": name,
                "namespace": NAMESPACE,
                "annotations": annotations or {},
            },
            "data": data,
        }
    )


class FakeSecretStore:
    """In-memory SecretStore that counts list calls."""

    def __init__(self, secrets: List[SecretDocument]):
        self.secrets = secrets
        self.calls = 0

    def list_secrets(self, namespace: str) -> List[SecretDocument]:
        self.calls += 1
        return list(self.secrets)


class FailingSecretStore:
    def list_secrets(self, namespace: str) -> List[SecretDocument]:
        raise SecretStoreError(f"Unable to list secrets in namespace {namespace}")


class TestMatchPrefix:
    def test_returns_first_matching_pattern(self):
        matched, pattern = match_prefix(
            "https://github.com/org/repo",
            ["https://github.ibm.com", "https://github.com/org", "https://github.com"],
        )

        assert matched is True
        assert pattern == "https://github.com/org"

    def test_no_match(self):
        assert match_prefix("https://github.com/org", ["https://gitlab.com"]) == (False, "")

    def test_empty_patterns(self):
        assert match_prefix("https://github.com/org", []) == (False, "")


class TestSecretDocument:
    def test_from_raw_with_null_sections(self):
        document = SecretDocument.from_raw(
            {"metadata": {"name": "s1", "annotations": None}, "data": None}
        )

        assert document.name == "s1"
        assert document.metadata.annotations == {}
        assert document.data == {}
        assert document.has_credentials() is False

    def test_from_raw_without_name_raises(self):
        with pytest.raises(CredentialDecodeError):
            SecretDocument.from_raw({"metadata": {"namespace": NAMESPACE}})

    def test_from_raw_with_non_string_annotation_raises(self):
        with pytest.raises(CredentialDecodeError) as exc_info:
            SecretDocument.from_raw(
                {"metadata": {"name": "bad", "annotations": {"kabanero.io/git-0": ["x"]}}}
            )

        assert exc_info.value.secret_name == "bad"

    def test_from_raw_with_non_mapping_raises(self):
        with pytest.raises(CredentialDecodeError):
            SecretDocument.from_raw("not a secret")

    def test_url_patterns_by_prefix(self):
        document = make_secret(
            "s1",
            annotations={
                "kabanero.io/git-0": "https://github.com/a",
                "tekton.dev/git-0": "https://github.com/b",
                "kabanero.io/git-1": "https://github.com/c",
                "other/annotation": "https://github.com/d",
            },
        )

        assert document.url_patterns("kabanero.io/git-") == [
            "https://github.com/a",
            "https://github.com/c",
        ]
        assert document.url_patterns("tekton.dev/git-") == ["https://github.com/b"]


class TestCredentialRecord:
    def test_from_document_merges_families(self):
        document = make_secret(
            "s1",
            annotations={
                "tekton.dev/git-0": "https://github.com/b",
                "kabanero.io/git-0": "https://github.com/a",
            },
            username="alice",
            password="s3cret",
        )

        record = CredentialRecord.from_document(document)

        assert record.name == "s1"
        assert record.namespace == NAMESPACE
        assert record.url_patterns == ["https://github.com/a", "https://github.com/b"]
        assert record.username == "alice"
        assert record.token == "s3cret"

    def test_token_not_in_repr(self):
        record = CredentialRecord.from_document(
            make_secret("s1", username="alice", password="s3cret")
        )

        assert "s3cret" not in repr(record)

    def test_invalid_base64_raises(self):
        document = SecretDocument.from_raw(
            {
                "metadata": {"name": "s1"},
                "data": {"username": "!!!not-base64!!!", "password": b64("t")},
            }
        )

        with pytest.raises(CredentialDecodeError) as exc_info:
            CredentialRecord.from_document(document)

        assert exc_info.value.secret_name == "s1"

    def test_invalid_utf8_raises(self):
        document = SecretDocument.from_raw(
            {
                "metadata": {"name": "s1"},
                "data": {
                    "username": b64("u"),
                    "password": base64.b64encode(b"\xff\xfe").decode("ascii"),
                },
            }
        )

        with pytest.raises(CredentialDecodeError):
            CredentialRecord.from_document(document)


class TestCredentialResolver:
    def test_resolves_kabanero_annotation(self):
        store = FakeSecretStore(
            [
                make_secret(
                    "org-secret",
                    annotations={"kabanero.io/git-0": "https://github.com/org"},
                    username="bot",
                    password="abc123",
                )
            ]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        credential = resolver.resolve("https://github.com/org/repo")

        assert credential.username == "bot"
        assert credential.token == "abc123"
        assert credential.secret_name == "org-secret"
        assert credential.matched_pattern == "https://github.com/org"

    def test_resolves_tekton_annotation(self):
        store = FakeSecretStore(
            [
                make_secret(
                    "tekton-secret",
                    annotations={"tekton.dev/git-0": "https://github.example.com"},
                )
            ]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        credential = resolver.resolve("https://github.example.com/org/repo")

        assert credential.secret_name == "tekton-secret"

    def test_first_family_checked_before_second(self):
        store = FakeSecretStore(
            [
                make_secret(
                    "s1",
                    annotations={
                        "tekton.dev/git-0": "https://github.com",
                        "kabanero.io/git-0": "https://github.com/org",
                    },
                )
            ]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        credential = resolver.resolve("https://github.com/org/repo")

        assert credential.matched_pattern == "https://github.com/org"

    def test_first_matching_record_in_enumeration_order(self):
        store = FakeSecretStore(
            [
                make_secret("unrelated", annotations={"kabanero.io/git-0": "https://gitlab.com"}),
                make_secret("first", annotations={"kabanero.io/git-0": "https://github.com/org"}),
                make_secret("second", annotations={"kabanero.io/git-0": "https://github.com"}),
            ]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        assert resolver.resolve("https://github.com/org/repo").secret_name == "first"

    def test_not_found(self):
        store = FakeSecretStore(
            [make_secret("s1", annotations={"kabanero.io/git-0": "https://github.com/other"})]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        with pytest.raises(CredentialNotFoundError) as exc_info:
            resolver.resolve("https://github.com/org/repo")

        assert exc_info.value.repository_url == "https://github.com/org/repo"
        assert exc_info.value.namespace == NAMESPACE

    def test_secret_without_annotations_never_matches(self):
        store = FakeSecretStore([make_secret("plain")])
        resolver = CredentialResolver(store, NAMESPACE)

        with pytest.raises(CredentialNotFoundError):
            resolver.resolve("https://github.com/org/repo")

    def test_decode_error_is_fatal(self):
        broken = SecretDocument.from_raw(
            {
                "metadata": {
                    "name": "broken",
                    "annotations": {"kabanero.io/git-0": "https://github.com"},
                },
                "data": {"username": "@@@", "password": "@@@"},
            }
        )
        store = FakeSecretStore(
            [
                broken,
                make_secret("good", annotations={"kabanero.io/git-0": "https://github.com"}),
            ]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        with pytest.raises(CredentialDecodeError) as exc_info:
            resolver.resolve("https://github.com/org/repo")

        assert exc_info.value.secret_name == "broken"

    def test_matching_secret_without_credentials_is_skipped(self):
        store = FakeSecretStore(
            [
                make_secret(
                    "ssh-key",
                    annotations={"tekton.dev/git-0": "https://github.com"},
                    username=None,
                    password=None,
                ),
                make_secret("basic", annotations={"tekton.dev/git-0": "https://github.com"}),
            ]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        assert resolver.resolve("https://github.com/org/repo").secret_name == "basic"

    def test_store_error_propagates(self):
        resolver = CredentialResolver(FailingSecretStore(), NAMESPACE)

        with pytest.raises(SecretStoreError):
            resolver.resolve("https://github.com/org/repo")

    def test_relists_on_every_call_by_default(self):
        store = FakeSecretStore(
            [make_secret("s1", annotations={"kabanero.io/git-0": "https://github.com"})]
        )
        resolver = CredentialResolver(store, NAMESPACE)

        resolver.resolve("https://github.com/a")
        resolver.resolve("https://github.com/b")

        assert store.calls == 2
        assert isinstance(resolver.cache, NoCredentialCache)

    def test_rotated_secret_seen_without_cache(self):
        store = FakeSecretStore(
            [make_secret("s1", annotations={"kabanero.io/git-0": "https://github.com"}, password="old")]
        )
        resolver = CredentialResolver(store, NAMESPACE)
        assert resolver.resolve("https://github.com/a").token == "old"

        store.secrets = [
            make_secret("s1", annotations={"kabanero.io/git-0": "https://github.com"}, password="new")
        ]

        assert resolver.resolve("https://github.com/a").token == "new"


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestCredentialCache:
    def test_ttl_cache_reuses_listing(self):
        store = FakeSecretStore(
            [make_secret("s1", annotations={"kabanero.io/git-0": "https://github.com"})]
        )
        clock = FakeClock()
        resolver = CredentialResolver(
            store, NAMESPACE, cache=TTLCredentialCache(30, clock=clock)
        )

        resolver.resolve("https://github.com/a")
        resolver.resolve("https://github.com/b")
        assert store.calls == 1

        clock.now += 31
        resolver.resolve("https://github.com/c")
        assert store.calls == 2

    def test_invalidate_forces_relist(self):
        store = FakeSecretStore(
            [make_secret("s1", annotations={"kabanero.io/git-0": "https://github.com"})]
        )
        resolver = CredentialResolver(
            store, NAMESPACE, cache=TTLCredentialCache(300, clock=FakeClock())
        )

        resolver.resolve("https://github.com/a")
        resolver.invalidate()
        resolver.resolve("https://github.com/a")

        assert store.calls == 2

    def test_failed_load_is_not_cached(self):
        cache = TTLCredentialCache(300, clock=FakeClock())
        calls = []

        def loader(namespace: str) -> List[SecretDocument]:
            calls.append(namespace)
            if len(calls) == 1:
                raise SecretStoreError("boom")
            return []

        with pytest.raises(SecretStoreError):
            cache.get_or_load(NAMESPACE, loader)

        assert cache.get_or_load(NAMESPACE, loader) == []
        assert len(calls) == 2

    def test_entries_are_per_namespace(self):
        cache = TTLCredentialCache(300, clock=FakeClock())
        loaded = []

        def loader(namespace: str) -> List[SecretDocument]:
            loaded.append(namespace)
            return []

        cache.get_or_load("a", loader)
        cache.get_or_load("b", loader)
        cache.get_or_load("a", loader)
        cache.invalidate("a")
        cache.get_or_load("a", loader)
        cache.get_or_load("b", loader)

        assert loaded == ["a", "b", "a"]

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            TTLCredentialCache(0)

    @pytest.mark.parametrize(
        "ttl, expected",
        [(0, NoCredentialCache), (-1, NoCredentialCache), (5, TTLCredentialCache)],
    )
    def test_create_credential_cache(self, ttl, expected):
        assert isinstance(create_credential_cache(ttl), expected)


def _k8s_secret(name: str, annotations, data):
    secret = MagicMock()
    secret.metadata.name = name
    secret.metadata.namespace = NAMESPACE
    secret.metadata.annotations = annotations
    secret.data = data
    return secret


class TestKubernetesSecretStore:
    def test_lists_secrets_as_documents(self):
        api = MagicMock()
        api.list_namespaced_secret.return_value.items = [
            _k8s_secret(
                "s1",
                {"kabanero.io/git-0": "https://github.com"},
                {"username": b64("u"), "password": b64("p")},
            ),
            _k8s_secret("s2", None, None),
        ]
        store = KubernetesSecretStore(api)

        documents = store.list_secrets(NAMESPACE)

        api.list_namespaced_secret.assert_called_once_with(NAMESPACE)
        assert [d.name for d in documents] == ["s1", "s2"]
        assert documents[0].has_credentials()
        assert documents[1].metadata.annotations == {}

    def test_api_exception_becomes_store_error(self):
        api = MagicMock()
        api.list_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")
        store = KubernetesSecretStore(api)

        with pytest.raises(SecretStoreError) as exc_info:
            store.list_secrets(NAMESPACE)

        assert isinstance(exc_info.value.original_error, ApiException)

    def test_resolver_over_kubernetes_store(self):
        api = MagicMock()
        api.list_namespaced_secret.return_value.items = [
            _k8s_secret(
                "org-test-secret",
                {"kabanero.io/git-0": "https://github.example.com/org-test"},
                {"username": b64("bot"), "password": b64("tok")},
            )
        ]
        resolver = CredentialResolver(KubernetesSecretStore(api), NAMESPACE)

        credential = resolver.resolve("https://github.example.com/org-test/repo")

        assert (credential.username, credential.token) == ("bot", "tok")
