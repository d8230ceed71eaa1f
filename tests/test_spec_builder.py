"""Tests for desired deployment construction."""

from conftest import TEST_NAMESPACE
from kubernetes.client.models import V1Container, V1Deployment

from nimbletools_cert_manager_operator.config import OperatorSettings
from nimbletools_cert_manager_operator.models import CertManagerConfigSpec
from nimbletools_cert_manager_operator.resources import (
    CERT_MANAGER_VERSION,
    MANAGED_BY_LABEL,
    WorkloadKind,
    get_template,
)
from nimbletools_cert_manager_operator.spec_builder import build_deployment


def _container(deployment: V1Deployment) -> V1Container:
    return deployment.spec.template.spec.containers[0]


class TestControllerArgs:
    """Test controller argument construction."""

    def test_args_without_resource_namespace(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test default args, acmesolver image and leader election namespace in order."""
        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        assert _container(deployment).args == [
            "--v=2",
            f"--acme-http01-solver-image=quay.io/jetstack/cert-manager-acmesolver:{CERT_MANAGER_VERSION}",
            "--leader-election-namespace=cm",
        ]

    def test_args_with_resource_namespace(self, settings: OperatorSettings) -> None:
        """Test that the cluster resource namespace sits before leader election."""
        cm_config = CertManagerConfigSpec(resourceNamespace="issuers")

        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        args = _container(deployment).args
        assert args[-2:] == [
            "--cluster-resource-namespace=issuers",
            "--leader-election-namespace=cm",
        ]
        assert len(args) == 4

    def test_acmesolver_image_follows_registry_and_postfix(
        self, settings: OperatorSettings
    ) -> None:
        """Test that the solver image uses the same registry and postfix."""
        cm_config = CertManagerConfigSpec(imageRegistry="registry.local/", imagePostFix="-ubi")

        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        assert (
            f"--acme-http01-solver-image=registry.local/cert-manager-acmesolver:"
            f"{CERT_MANAGER_VERSION}-ubi" in _container(deployment).args
        )

    def test_cainjector_leader_election(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that the CA injector gets the leader election namespace."""
        deployment = build_deployment(WorkloadKind.CAINJECTOR, cm_config, "cm", settings)

        assert _container(deployment).args == ["--v=2", "--leader-election-namespace=cm"]

    def test_webhook_has_no_leader_election(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that the webhook keeps its template args."""
        deployment = build_deployment(WorkloadKind.WEBHOOK, cm_config, "cm", settings)

        args = _container(deployment).args
        assert args == list(get_template(WorkloadKind.WEBHOOK).default_args)
        assert not any(arg.startswith("--leader-election-namespace") for arg in args)


class TestImages:
    """Test image resolution."""

    def test_default_registry(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test the image built from the default registry."""
        deployment = build_deployment(WorkloadKind.WEBHOOK, cm_config, TEST_NAMESPACE, settings)

        assert (
            _container(deployment).image
            == f"quay.io/jetstack/cert-manager-webhook:{CERT_MANAGER_VERSION}"
        )

    def test_custom_registry_with_trailing_slash(self, settings: OperatorSettings) -> None:
        """Test that a trailing slash on the registry is dropped."""
        cm_config = CertManagerConfigSpec(imageRegistry="my.registry.io/mirror/")

        deployment = build_deployment(WorkloadKind.CAINJECTOR, cm_config, "cm", settings)

        assert (
            _container(deployment).image
            == f"my.registry.io/mirror/cert-manager-cainjector:{CERT_MANAGER_VERSION}"
        )

    def test_settings_registry_used_when_config_has_none(
        self, cm_config: CertManagerConfigSpec
    ) -> None:
        """Test that the operator default registry applies without a CR registry."""
        settings = OperatorSettings(default_image_registry="mirror.example.com")

        deployment = build_deployment(WorkloadKind.CAINJECTOR, cm_config, "cm", settings)

        assert _container(deployment).image.startswith("mirror.example.com/cert-manager-cainjector:")

    def test_image_postfix(self, settings: OperatorSettings) -> None:
        """Test that the postfix is appended to the tag."""
        cm_config = CertManagerConfigSpec(imagePostFix="-fips")

        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        assert _container(deployment).image.endswith(f":{CERT_MANAGER_VERSION}-fips")

    def test_image_override(self) -> None:
        """Test that an override replaces the computed reference entirely."""
        settings = OperatorSettings(
            image_overrides={
                "cert-manager-controller": "internal/controller@sha256:abc",
                "cert-manager-acmesolver": "internal/solver:1",
            }
        )
        cm_config = CertManagerConfigSpec(imageRegistry="ignored.io", imagePostFix="-x")

        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        assert _container(deployment).image == "internal/controller@sha256:abc"
        assert "--acme-http01-solver-image=internal/solver:1" in _container(deployment).args


class TestWebhook:
    """Test webhook specific settings."""

    def test_host_network_enabled_by_default(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that the webhook uses host networking unless disabled."""
        deployment = build_deployment(WorkloadKind.WEBHOOK, cm_config, "cm", settings)

        assert deployment.spec.template.spec.host_network is True

    def test_host_network_disabled(self, settings: OperatorSettings) -> None:
        """Test that disableHostNetwork turns host networking off."""
        cm_config = CertManagerConfigSpec(disableHostNetwork=True)

        deployment = build_deployment(WorkloadKind.WEBHOOK, cm_config, "cm", settings)

        assert deployment.spec.template.spec.host_network is False

    def test_host_network_only_on_webhook(self, settings: OperatorSettings) -> None:
        """Test that other components never get host networking."""
        cm_config = CertManagerConfigSpec(disableHostNetwork=False)

        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        assert not deployment.spec.template.spec.host_network

    def test_read_only_root_filesystem(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that the webhook runs with a read-only root filesystem."""
        deployment = build_deployment(WorkloadKind.WEBHOOK, cm_config, "cm", settings)

        assert _container(deployment).security_context.read_only_root_filesystem is True
        assert get_template(WorkloadKind.WEBHOOK).read_only_root_filesystem is None


class TestResources:
    """Test resource overrides."""

    def test_template_resources_by_default(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that template requests and limits apply without overrides."""
        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        resources = _container(deployment).resources
        assert resources.requests == {"cpu": "10m", "memory": "32Mi", "ephemeral-storage": "64Mi"}
        assert resources.limits == {"cpu": "200m", "memory": "512Mi", "ephemeral-storage": "256Mi"}

    def test_limits_override_replaces_block(self, settings: OperatorSettings) -> None:
        """Test that the limits override replaces the whole limits block."""
        cm_config = CertManagerConfigSpec.model_validate(
            {"certManagerController": {"resources": {"limits": {"cpu": 1, "memory": "1Gi"}}}}
        )

        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        resources = _container(deployment).resources
        assert resources.limits == {"cpu": "1", "memory": "1Gi"}
        assert resources.requests == {"cpu": "10m", "memory": "32Mi", "ephemeral-storage": "64Mi"}

    def test_override_is_per_component(self, settings: OperatorSettings) -> None:
        """Test that a webhook override leaves the CA injector untouched."""
        cm_config = CertManagerConfigSpec.model_validate(
            {"certManagerWebhook": {"resources": {"requests": {"cpu": "50m"}}}}
        )

        webhook = build_deployment(WorkloadKind.WEBHOOK, cm_config, "cm", settings)
        cainjector = build_deployment(WorkloadKind.CAINJECTOR, cm_config, "cm", settings)

        assert _container(webhook).resources.requests == {"cpu": "50m"}
        assert _container(cainjector).resources.requests["cpu"] == "10m"


class TestDeploymentShape:
    """Test metadata and template isolation."""

    def test_namespace_and_labels(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that the deployment lives in the requested namespace with managed-by label."""
        deployment = build_deployment(WorkloadKind.CONTROLLER, cm_config, "somewhere", settings)

        assert deployment.metadata.namespace == "somewhere"
        assert deployment.metadata.name == "cert-manager-controller"
        assert deployment.metadata.labels[MANAGED_BY_LABEL] == "nimbletools-cert-manager-operator"
        assert deployment.spec.template.spec.service_account_name == "cert-manager"

    def test_builds_do_not_share_state(self, settings: OperatorSettings) -> None:
        """Test that an override in one build does not leak into the next."""
        custom = CertManagerConfigSpec.model_validate(
            {
                "imageRegistry": "other.io",
                "certManagerController": {"resources": {"limits": {"cpu": "2"}}},
            }
        )

        first = build_deployment(WorkloadKind.CONTROLLER, custom, "a", settings)
        second = build_deployment(WorkloadKind.CONTROLLER, CertManagerConfigSpec(), "b", settings)

        assert _container(first).image.startswith("other.io/")
        assert _container(second).image.startswith("quay.io/jetstack/")
        assert _container(second).resources.limits["cpu"] == "200m"
        assert get_template(WorkloadKind.CONTROLLER).limits["cpu"] == "200m"
        assert _container(first).args[-1] == "--leader-election-namespace=a"
        assert _container(second).args[-1] == "--leader-election-namespace=b"

    def test_webhook_probes(
        self, cm_config: CertManagerConfigSpec, settings: OperatorSettings
    ) -> None:
        """Test that only the webhook carries health probes."""
        webhook = build_deployment(WorkloadKind.WEBHOOK, cm_config, "cm", settings)
        controller = build_deployment(WorkloadKind.CONTROLLER, cm_config, "cm", settings)

        assert _container(webhook).liveness_probe.initial_delay_seconds == 60
        assert _container(webhook).readiness_probe.http_get.path == "/healthz"
        assert _container(controller).liveness_probe is None
        assert _container(controller).readiness_probe is None
