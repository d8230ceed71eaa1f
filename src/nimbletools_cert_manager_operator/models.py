"""
Data models for the NimbleTools cert-manager operator
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kubernetes.client.models import V1Deployment
from kubernetes.utils import parse_quantity
from pydantic import BaseModel, ConfigDict, Field, field_validator

from nimbletools_cert_manager_operator.resources import WorkloadKind

Quantity = str | int | float


class ResourceOverrides(BaseModel):
    """Resource requests/limits override for one component"""

    limits: dict[str, Quantity] | None = Field(
        default=None, description="Replaces the template limits block when set"
    )
    requests: dict[str, Quantity] | None = Field(
        default=None, description="Replaces the template requests block when set"
    )

    @field_validator("limits", "requests")
    @classmethod
    def check_quantities(cls, v: dict[str, Quantity] | None) -> dict[str, Quantity] | None:
        for name, value in (v or {}).items():
            try:
                parse_quantity(value)
            except ValueError as e:
                raise ValueError(f"invalid quantity for {name}: {value!r}") from e
        return v


class ComponentSpec(BaseModel):
    """Per-component configuration"""

    resources: ResourceOverrides = Field(
        default_factory=ResourceOverrides, description="Resource overrides"
    )


class CertManagerConfigSpec(BaseModel):
    """Spec of a CertManagerConfig resource"""

    model_config = ConfigDict(extra="ignore")

    imageRegistry: str = Field(default="", description="Registry that replaces the default one")
    imagePostFix: str = Field(default="", description="Suffix appended to every image tag")
    resourceNamespace: str = Field(
        default="", description="Namespace cert-manager uses for cluster-scoped resources"
    )
    disableHostNetwork: bool | None = Field(
        default=None, description="Run the webhook without host networking"
    )
    certManagerController: ComponentSpec = Field(
        default_factory=ComponentSpec, description="Controller configuration"
    )
    certManagerCAInjector: ComponentSpec = Field(
        default_factory=ComponentSpec, description="CA injector configuration"
    )
    certManagerWebhook: ComponentSpec = Field(
        default_factory=ComponentSpec, description="Webhook configuration"
    )

    def component(self, kind: WorkloadKind) -> ComponentSpec:
        """Return the configuration block for a component"""
        match kind:
            case WorkloadKind.CONTROLLER:
                return self.certManagerController
            case WorkloadKind.CAINJECTOR:
                return self.certManagerCAInjector
            case WorkloadKind.WEBHOOK:
                return self.certManagerWebhook


class DiscoverySignal(str, Enum):
    """How a candidate deployment was discovered"""

    LABEL = "label"
    IMAGE = "image"


@dataclass
class Candidate:
    """Existing deployment that may already represent a managed workload"""

    deployment: V1Deployment
    signals: set[DiscoverySignal] = field(default_factory=set)

    @property
    def name(self) -> str:
        return str(self.deployment.metadata.name)

    @property
    def namespace(self) -> str:
        return str(self.deployment.metadata.namespace)

    @property
    def key(self) -> str:
        return identity_key(self.name, self.namespace)


def identity_key(name: str, namespace: str) -> str:
    """Dedup key for a deployment; names are only unique within a namespace"""
    return f"{name}/{namespace}"


class ReconcileAction(str, Enum):
    """Outcome of a reconciliation pass"""

    NOOP = "noop"
    CREATED = "created"
    UPDATED = "updated"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class ReconcileResult:
    """Result of reconciling one workload"""

    action: ReconcileAction
    name: str
    namespace: str
    detail: str = ""
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.action not in (ReconcileAction.CONFLICT, ReconcileAction.ERROR)

    @property
    def retryable(self) -> bool:
        """Whether re-running the whole pass may succeed"""
        return bool(getattr(self.error, "retryable", False))

    def summary(self) -> dict[str, Any]:
        """Status entry describing this result"""
        return {
            "action": self.action.value,
            "namespace": self.namespace,
            "message": self.detail,
        }
