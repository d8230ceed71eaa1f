"""Test configuration and fixtures."""

import copy
import threading
from typing import Any

import pytest
from kubernetes.client.models import (
    V1Container,
    V1Deployment,
    V1DeploymentList,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)
from kubernetes.client.rest import ApiException

from nimbletools_cert_manager_operator.config import OperatorSettings
from nimbletools_cert_manager_operator.models import CertManagerConfigSpec
from nimbletools_cert_manager_operator.resources import WorkloadKind
from nimbletools_cert_manager_operator.spec_builder import build_deployment

TEST_NAMESPACE = "cert-manager-test"


def _selector_matches(labels: dict[str, str] | None, selector: str) -> bool:
    labels = labels or {}
    for requirement in selector.split(","):
        key, _, value = requirement.partition("=")
        if labels.get(key) != value:
            return False
    return True


class InMemoryDeploymentStore:
    """Deployment store that behaves like the API server for the calls we make"""

    def __init__(self, deployments: list[V1Deployment] | None = None) -> None:
        self.deployments: dict[tuple[str, str], V1Deployment] = {}
        self.writes: list[tuple[str, str, str]] = []
        self._resource_version = 0
        self._lock = threading.RLock()
        for deployment in deployments or []:
            self.add(deployment)

    def add(self, deployment: V1Deployment) -> V1Deployment:
        stored = copy.deepcopy(deployment)
        with self._lock:
            self._resource_version += 1
            stored.metadata.resource_version = str(self._resource_version)
            key = (stored.metadata.namespace, stored.metadata.name)
            self.deployments[key] = stored
        return copy.deepcopy(stored)

    def get(self, name: str, namespace: str) -> V1Deployment | None:
        return self.deployments.get((namespace, name))

    def list_deployment_for_all_namespaces(
        self, label_selector: str | None = None, **_kwargs: Any
    ) -> V1DeploymentList:
        with self._lock:
            current = list(self.deployments.values())
        items = [
            copy.deepcopy(deployment)
            for deployment in current
            if label_selector is None
            or _selector_matches(deployment.metadata.labels, label_selector)
        ]
        return V1DeploymentList(items=items)

    def create_namespaced_deployment(
        self, namespace: str, body: V1Deployment, **_kwargs: Any
    ) -> V1Deployment:
        with self._lock:
            if (namespace, body.metadata.name) in self.deployments:
                raise ApiException(status=409, reason="AlreadyExists")
            self.writes.append(("create", namespace, body.metadata.name))
            return self.add(body)

    def replace_namespaced_deployment(
        self, name: str, namespace: str, body: V1Deployment, **_kwargs: Any
    ) -> V1Deployment:
        with self._lock:
            current = self.get(name, namespace)
            if current is None:
                raise ApiException(status=404, reason="NotFound")
            if body.metadata.resource_version != current.metadata.resource_version:
                raise ApiException(status=409, reason="Conflict")
            self.writes.append(("update", namespace, name))
            return self.add(body)

    def delete_namespaced_deployment(self, name: str, namespace: str, **_kwargs: Any) -> None:
        with self._lock:
            if (namespace, name) not in self.deployments:
                raise ApiException(status=404, reason="NotFound")
            self.writes.append(("delete", namespace, name))
            del self.deployments[(namespace, name)]


def make_deployment(
    name: str,
    namespace: str,
    image: str,
    labels: dict[str, str] | None = None,
) -> V1Deployment:
    """Minimal single-container deployment"""
    return V1Deployment(
        metadata=V1ObjectMeta(name=name, namespace=namespace, labels=labels),
        spec=V1DeploymentSpec(
            selector=V1LabelSelector(match_labels={"app": name}),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels={"app": name}),
                spec=V1PodSpec(containers=[V1Container(name=name, image=image)]),
            ),
        ),
    )


@pytest.fixture
def settings() -> OperatorSettings:
    """Operator settings for tests."""
    return OperatorSettings(deploy_namespace=TEST_NAMESPACE)


@pytest.fixture
def cm_config() -> CertManagerConfigSpec:
    """CertManagerConfig spec with every field defaulted."""
    return CertManagerConfigSpec()


@pytest.fixture
def owner() -> dict[str, Any]:
    """Body of the owning CertManagerConfig."""
    return {
        "apiVersion": "operator.nimbletools.dev/v1",
        "kind": "CertManagerConfig",
        "metadata": {"name": "default", "uid": "0f6f4b1e-6a8e-4b0f-9f4e-3c1d2a7b9e10"},
    }


@pytest.fixture
def store() -> InMemoryDeploymentStore:
    """Empty in-memory deployment store."""
    return InMemoryDeploymentStore()


@pytest.fixture
def controller_deployment(
    cm_config: CertManagerConfigSpec, settings: OperatorSettings
) -> V1Deployment:
    """Desired controller deployment."""
    return build_deployment(WorkloadKind.CONTROLLER, cm_config, TEST_NAMESPACE, settings)


@pytest.fixture
def webhook_deployment(
    cm_config: CertManagerConfigSpec, settings: OperatorSettings
) -> V1Deployment:
    """Desired webhook deployment."""
    return build_deployment(WorkloadKind.WEBHOOK, cm_config, TEST_NAMESPACE, settings)
