"""
Workload templates for the cert-manager components managed by the operator.

Each component is described by an immutable WorkloadTemplate. Templates never
hand out shared Deployment objects: every call to ``WorkloadTemplate.deployment``
builds a fresh V1Deployment that build_deployment is free to modify.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kubernetes.client.models import (
    V1Capabilities,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1EnvVar,
    V1EnvVarSource,
    V1HTTPGetAction,
    V1LabelSelector,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1PodSecurityContext,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1ResourceRequirements,
    V1SeccompProfile,
    V1SecurityContext,
)

OPERATOR_NAME = "nimbletools-cert-manager-operator"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

DEFAULT_IMAGE_REGISTRY = "quay.io/jetstack"
CERT_MANAGER_VERSION = "v1.14.4"

CONTROLLER_IMAGE_NAME = "cert-manager-controller"
ACMESOLVER_IMAGE_NAME = "cert-manager-acmesolver"
CAINJECTOR_IMAGE_NAME = "cert-manager-cainjector"
WEBHOOK_IMAGE_NAME = "cert-manager-webhook"

# Environment variables that replace a computed image reference entirely
IMAGE_ENV_VARS = {
    "CERT_MANAGER_CONTROLLER_IMAGE": CONTROLLER_IMAGE_NAME,
    "CERT_MANAGER_ACMESOLVER_IMAGE": ACMESOLVER_IMAGE_NAME,
    "CERT_MANAGER_CAINJECTOR_IMAGE": CAINJECTOR_IMAGE_NAME,
    "CERT_MANAGER_WEBHOOK_IMAGE": WEBHOOK_IMAGE_NAME,
}

DEFAULT_ARGS = ("--v=2",)

SMOKE_CHECK_ISSUER_NAME = "smoke-check-issuer"


class WorkloadKind(str, Enum):
    """cert-manager components reconciled by the operator"""

    CONTROLLER = "controller"
    CAINJECTOR = "cainjector"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class WorkloadTemplate:
    """Static defaults for one cert-manager component"""

    kind: WorkloadKind
    name: str
    image_name: str
    service_account: str
    labels: dict[str, str]
    default_args: tuple[str, ...] = DEFAULT_ARGS
    requests: dict[str, str] = field(default_factory=dict)
    limits: dict[str, str] = field(default_factory=dict)
    read_only_root_filesystem: bool | None = True

    @property
    def label_selector(self) -> str:
        """Label selector used to discover prior installs of this component"""
        return ",".join(f"{key}={value}" for key, value in sorted(self.labels.items()))

    def deployment(self) -> V1Deployment:
        """Build a fresh template Deployment for this component.

        The image and namespace are left for build_deployment to fill in.
        """
        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=V1ObjectMeta(
                name=self.name,
                labels={**self.labels, MANAGED_BY_LABEL: OPERATOR_NAME},
            ),
            spec=V1DeploymentSpec(
                replicas=1,
                selector=V1LabelSelector(match_labels=dict(self.labels)),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=dict(self.labels)),
                    spec=V1PodSpec(
                        service_account_name=self.service_account,
                        security_context=V1PodSecurityContext(
                            run_as_non_root=True,
                            seccomp_profile=V1SeccompProfile(type="RuntimeDefault"),
                        ),
                        containers=[
                            V1Container(
                                name=self.name,
                                image_pull_policy="IfNotPresent",
                                args=list(self.default_args),
                                env=[
                                    V1EnvVar(
                                        name="POD_NAMESPACE",
                                        value_from=V1EnvVarSource(
                                            field_ref=V1ObjectFieldSelector(
                                                field_path="metadata.namespace"
                                            )
                                        ),
                                    )
                                ],
                                ports=self._ports(),
                                liveness_probe=self._liveness_probe(),
                                readiness_probe=self._readiness_probe(),
                                security_context=V1SecurityContext(
                                    allow_privilege_escalation=False,
                                    read_only_root_filesystem=self.read_only_root_filesystem,
                                    capabilities=V1Capabilities(drop=["ALL"]),
                                ),
                                resources=V1ResourceRequirements(
                                    requests=dict(self.requests),
                                    limits=dict(self.limits),
                                ),
                            )
                        ],
                    ),
                ),
            ),
        )

    def _ports(self) -> list[V1ContainerPort]:
        match self.kind:
            case WorkloadKind.CONTROLLER:
                return [V1ContainerPort(container_port=9402, name="http-metrics", protocol="TCP")]
            case WorkloadKind.WEBHOOK:
                return [
                    V1ContainerPort(container_port=10250, name="https", protocol="TCP"),
                    V1ContainerPort(container_port=6080, name="healthcheck", protocol="TCP"),
                ]
            case _:
                return []

    def _liveness_probe(self) -> V1Probe | None:
        if self.kind is not WorkloadKind.WEBHOOK:
            return None
        return V1Probe(
            http_get=V1HTTPGetAction(path="/livez", port=6080, scheme="HTTP"),
            initial_delay_seconds=60,
            timeout_seconds=1,
            period_seconds=10,
            failure_threshold=3,
        )

    def _readiness_probe(self) -> V1Probe | None:
        if self.kind is not WorkloadKind.WEBHOOK:
            return None
        return V1Probe(
            http_get=V1HTTPGetAction(path="/healthz", port=6080, scheme="HTTP"),
            initial_delay_seconds=5,
            timeout_seconds=1,
            period_seconds=5,
            failure_threshold=3,
        )


TEMPLATES: dict[WorkloadKind, WorkloadTemplate] = {
    WorkloadKind.CONTROLLER: WorkloadTemplate(
        kind=WorkloadKind.CONTROLLER,
        name="cert-manager-controller",
        image_name=CONTROLLER_IMAGE_NAME,
        service_account="cert-manager",
        labels={
            "app.kubernetes.io/name": "cert-manager",
            "app.kubernetes.io/component": "controller",
        },
        requests={"cpu": "10m", "memory": "32Mi", "ephemeral-storage": "64Mi"},
        limits={"cpu": "200m", "memory": "512Mi", "ephemeral-storage": "256Mi"},
    ),
    WorkloadKind.CAINJECTOR: WorkloadTemplate(
        kind=WorkloadKind.CAINJECTOR,
        name="cert-manager-cainjector",
        image_name=CAINJECTOR_IMAGE_NAME,
        service_account="cert-manager-cainjector",
        labels={
            "app.kubernetes.io/name": "cainjector",
            "app.kubernetes.io/component": "cainjector",
        },
        requests={"cpu": "10m", "memory": "32Mi", "ephemeral-storage": "64Mi"},
        limits={"cpu": "200m", "memory": "512Mi", "ephemeral-storage": "256Mi"},
    ),
    WorkloadKind.WEBHOOK: WorkloadTemplate(
        kind=WorkloadKind.WEBHOOK,
        name="cert-manager-webhook",
        image_name=WEBHOOK_IMAGE_NAME,
        service_account="cert-manager-webhook",
        labels={
            "app.kubernetes.io/name": "webhook",
            "app.kubernetes.io/component": "webhook",
        },
        default_args=(
            "--v=2",
            "--secure-port=10250",
            "--dynamic-serving-ca-secret-namespace=$(POD_NAMESPACE)",
            "--dynamic-serving-ca-secret-name=cert-manager-webhook-ca",
            "--dynamic-serving-dns-names=cert-manager-webhook,"
            "cert-manager-webhook.$(POD_NAMESPACE),"
            "cert-manager-webhook.$(POD_NAMESPACE).svc",
        ),
        requests={"cpu": "10m", "memory": "32Mi", "ephemeral-storage": "64Mi"},
        limits={"cpu": "100m", "memory": "128Mi", "ephemeral-storage": "128Mi"},
        read_only_root_filesystem=None,
    ),
}


def get_template(kind: WorkloadKind) -> WorkloadTemplate:
    """Return the static template for a component"""
    return TEMPLATES[kind]


def get_image_id(
    registry: str,
    image_name: str,
    version: str,
    postfix: str = "",
    override: str | None = None,
) -> str:
    """
    Resolve the full image reference for a component.

    Args:
        registry: Image registry, a single trailing "/" is dropped
        image_name: Repository name within the registry
        version: Image tag
        postfix: Optional suffix appended to the tag (e.g. "-ubi")
        override: Complete image reference that wins over the computed one

    Returns:
        Image reference such as "quay.io/jetstack/cert-manager-controller:v1.14.4"
    """
    if override:
        return override
    registry = registry.removesuffix("/")
    return f"{registry}/{image_name}:{version}{postfix}"


def smoke_check_issuer(namespace: str) -> dict[str, Any]:
    """Self-signed Issuer used to verify that cert-manager answers requests"""
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Issuer",
        "metadata": {
            "name": SMOKE_CHECK_ISSUER_NAME,
            "namespace": namespace,
            "labels": {MANAGED_BY_LABEL: OPERATOR_NAME},
        },
        "spec": {"selfSigned": {}},
    }
