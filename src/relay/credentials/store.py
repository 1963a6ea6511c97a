"""Secret store access for credential lookup.

The resolver depends on the SecretStore protocol only. The production
implementation reads Kubernetes secrets through the official ``kubernetes``
client; tests provide their own in-memory stores.
"""

import logging
from typing import Any, List, Optional, Protocol, runtime_checkable

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from src.relay.credentials.models import SecretDocument
from src.relay.errors import SecretStoreError


logger = logging.getLogger(__name__)


@runtime_checkable
class SecretStore(Protocol):
    """Protocol for listing credential secrets in a namespace."""

    def list_secrets(self, namespace: str) -> List[SecretDocument]:
        """List every secret in the namespace.

        Args:
            namespace: The namespace to list.

        Returns:
            The secrets, in the order the backing store enumerates them.

        Raises:
            SecretStoreError: If the listing cannot be retrieved.
            CredentialDecodeError: If a listed object is not a secret.
        """
        ...


class KubernetesSecretStore:
    """SecretStore backed by the Kubernetes core/v1 secrets API.

    Attributes:
        api: The CoreV1Api used for listing.
    """

    def __init__(self, api: k8s_client.CoreV1Api):
        self.api = api

    def list_secrets(self, namespace: str) -> List[SecretDocument]:
        logger.debug("Listing secrets in namespace %s", namespace)
        try:
            secret_list = self.api.list_namespaced_secret(namespace)
        except (ApiException, HTTPError) as e:
            logger.error(
                "Unable to list secrets",
                extra={"namespace": namespace, "error": str(e)},
            )
            raise SecretStoreError(
                f"Unable to list secrets in namespace {namespace}: {e}",
                original_error=e,
            ) from e

        return [self._to_document(item) for item in secret_list.items or []]

    @staticmethod
    def _to_document(secret: Any) -> SecretDocument:
        metadata = secret.metadata
        return SecretDocument.from_raw(
            {
                "metadata": {
                    "name": getattr(metadata, "name", None),
                    "namespace": getattr(metadata, "namespace", None) or "",
                    "annotations": getattr(metadata, "annotations", None),
                },
                "data": secret.data,
            }
        )


def create_kubernetes_secret_store(
    master_url: str = "",
    kubeconfig: Optional[str] = None,
) -> KubernetesSecretStore:
    """Build a KubernetesSecretStore for in-cluster or external use.

    With an empty master_url the in-cluster service account configuration
    is used. Otherwise the kubeconfig file is loaded and the API server
    host is overridden by master_url.

    Raises:
        SecretStoreError: If no usable cluster configuration is found.
    """
    configuration = k8s_client.Configuration()
    try:
        if master_url:
            logger.info(
                "Using Kubernetes API server %s with kubeconfig %s",
                master_url,
                kubeconfig or "<default>",
            )
            k8s_config.load_kube_config(
                config_file=kubeconfig or None,
                client_configuration=configuration,
            )
            configuration.host = master_url
        else:
            logger.info("Using in-cluster Kubernetes configuration")
            k8s_config.load_incluster_config(client_configuration=configuration)
    except (ConfigException, OSError) as e:
        raise SecretStoreError(
            f"Unable to load Kubernetes configuration: {e}",
            original_error=e,
        ) from e

    api = k8s_client.CoreV1Api(k8s_client.ApiClient(configuration))
    return KubernetesSecretStore(api)
