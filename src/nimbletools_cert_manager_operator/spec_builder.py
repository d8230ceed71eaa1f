"""
Desired Deployment construction for the cert-manager components.
"""

import logging

from kubernetes.client.models import V1Deployment, V1ResourceRequirements

from nimbletools_cert_manager_operator.config import OperatorSettings
from nimbletools_cert_manager_operator.models import CertManagerConfigSpec, ResourceOverrides
from nimbletools_cert_manager_operator.resources import (
    ACMESOLVER_IMAGE_NAME,
    CERT_MANAGER_VERSION,
    WorkloadKind,
    WorkloadTemplate,
    get_image_id,
    get_template,
)

logger = logging.getLogger(__name__)


def build_deployment(
    kind: WorkloadKind,
    config: CertManagerConfigSpec,
    namespace: str,
    settings: OperatorSettings,
) -> V1Deployment:
    """Build the desired Deployment for a component.

    Starts from a fresh copy of the component template and applies the
    CertManagerConfig on top of it. The result always lives in ``namespace``.
    """
    template = get_template(kind)
    deployment = template.deployment()
    pod_spec = deployment.spec.template.spec
    container = pod_spec.containers[0]

    registry = config.imageRegistry or settings.default_image_registry
    container.image = _image(template.image_name, registry, config, settings)

    match kind:
        case WorkloadKind.CONTROLLER:
            acmesolver = _image(ACMESOLVER_IMAGE_NAME, registry, config, settings)
            container.args = _controller_args(template, config, namespace, acmesolver)
        case WorkloadKind.CAINJECTOR:
            container.args = [*template.default_args, f"--leader-election-namespace={namespace}"]
        case WorkloadKind.WEBHOOK:
            container.security_context.read_only_root_filesystem = True
            pod_spec.host_network = not bool(config.disableHostNetwork)

    _apply_resources(container.resources, config.component(kind).resources)

    deployment.metadata.namespace = namespace
    logger.debug("Resulting image for %s: %s", template.name, container.image)
    return deployment


def _image(
    image_name: str, registry: str, config: CertManagerConfigSpec, settings: OperatorSettings
) -> str:
    return get_image_id(
        registry,
        image_name,
        CERT_MANAGER_VERSION,
        config.imagePostFix,
        override=settings.image_overrides.get(image_name),
    )


def _controller_args(
    template: WorkloadTemplate,
    config: CertManagerConfigSpec,
    namespace: str,
    acmesolver_image: str,
) -> list[str]:
    # Order matters: args are compared as an ordered sequence
    args = list(template.default_args)
    args.append(f"--acme-http01-solver-image={acmesolver_image}")
    if config.resourceNamespace:
        args.append(f"--cluster-resource-namespace={config.resourceNamespace}")
    args.append(f"--leader-election-namespace={namespace}")
    return args


def _apply_resources(resources: V1ResourceRequirements, overrides: ResourceOverrides) -> None:
    """Replace whole requests/limits blocks with the CR overrides when present"""
    if overrides.limits is not None:
        resources.limits = {key: str(value) for key, value in overrides.limits.items()}
    if overrides.requests is not None:
        resources.requests = {key: str(value) for key, value in overrides.requests.items()}
