"""
Cluster state store used by the reconciler.

The store is duck-typed: ``kubernetes.client.AppsV1Api`` satisfies it, and
tests can provide an in-memory implementation.
"""

from typing import Any, Protocol

from kubernetes.client.models import V1Deployment, V1DeploymentList


class DeploymentStore(Protocol):
    """Subset of the AppsV1 API the reconciler relies on."""

    def list_deployment_for_all_namespaces(self, **kwargs: Any) -> V1DeploymentList:
        """List deployments across all namespaces, optionally by label_selector."""
        ...

    def create_namespaced_deployment(
        self, namespace: str, body: V1Deployment, **kwargs: Any
    ) -> V1Deployment:
        """Create a deployment."""
        ...

    def replace_namespaced_deployment(
        self, name: str, namespace: str, body: V1Deployment, **kwargs: Any
    ) -> V1Deployment:
        """Replace a deployment; body.metadata.resource_version guards stale writes."""
        ...

    def delete_namespaced_deployment(self, name: str, namespace: str, **kwargs: Any) -> Any:
        """Delete a deployment by identity."""
        ...
