"""
Drift detection between a desired and an observed Deployment.

The comparison is an explicit, enumerated set of checks rather than a deep
equality of the whole object: the API server fills in defaults we never set,
quantities have several spellings, and some sub-structures are compared only
when both sides carry them. Checks short-circuit on the first mismatch, which
is logged at debug level.
"""

import logging
from decimal import Decimal
from typing import Any

from kubernetes.client.models import (
    V1Container,
    V1Deployment,
    V1EnvVar,
    V1PodSpec,
    V1Probe,
    V1ResourceRequirements,
    V1SecurityContext,
    V1Volume,
    V1VolumeMount,
)
from kubernetes.utils import parse_quantity

logger = logging.getLogger(__name__)

SECURITY_CONTEXT_FIELDS = (
    "run_as_non_root",
    "run_as_user",
    "allow_privilege_escalation",
    "read_only_root_filesystem",
    "privileged",
    "capabilities",
)

# (block, resource) pairs compared by normalized quantity
RESOURCE_QUANTITIES = (
    ("limits", "cpu"),
    ("limits", "memory"),
    ("requests", "cpu"),
    ("requests", "memory"),
    ("requests", "ephemeral-storage"),
    ("limits", "ephemeral-storage"),
)


def _differs(what: str, first: Any, second: Any) -> bool:
    if first != second:
        logger.debug("%s not equal: first=%s second=%s", what, first, second)
        return True
    return False


def _presence_differs(what: str, first: Any, second: Any) -> bool:
    """True when exactly one side is None"""
    if (first is None) != (second is None):
        logger.debug("One of the %s is None: first=%s second=%s", what, first, second)
        return True
    return False


def equal_deployments(first: V1Deployment, second: V1Deployment) -> bool:
    """
    Compare two deployments under the operator's drift scope.

    Checks labels, replicas, pod template labels, pull secrets, service
    account, pod security context, volumes, host network, the single
    container (name, image, pull policy, args, probes, security context,
    resources, env, volume mounts).

    Returns:
        True if no discrepancy was found
    """
    if _differs("Labels", first.metadata.labels or {}, second.metadata.labels or {}):
        return False

    if _differs("Replicas", first.spec.replicas, second.spec.replicas):
        return False

    first_pod = first.spec.template
    second_pod = second.spec.template
    if _differs(
        "Pod labels",
        (first_pod.metadata.labels if first_pod.metadata else None) or {},
        (second_pod.metadata.labels if second_pod.metadata else None) or {},
    ):
        return False

    if not _equal_pod_specs(first_pod.spec, second_pod.spec):
        return False

    logger.debug(
        "Finished checking for differences between the deployments and found none: %s",
        first.metadata.name,
    )
    return True


def _equal_pod_specs(first: V1PodSpec, second: V1PodSpec) -> bool:
    if _differs(
        "Image pull secrets", first.image_pull_secrets or [], second.image_pull_secrets or []
    ):
        return False

    if _differs("Service account names", first.service_account_name, second.service_account_name):
        return False

    if _differs("Pod security context", first.security_context, second.security_context):
        return False

    if not equal_volumes(first.volumes or [], second.volumes or []):
        return False

    if _differs("Host network", bool(first.host_network), bool(second.host_network)):
        return False

    first_containers = first.containers or []
    second_containers = second.containers or []
    if len(first_containers) != 1 or len(second_containers) != 1:
        logger.debug(
            "Expected exactly one container: first=%d second=%d",
            len(first_containers),
            len(second_containers),
        )
        return False

    return equal_containers(first_containers[0], second_containers[0])


def _volume_name(volume: V1Volume) -> str:
    return str(volume.name)


def equal_volumes(first: list[V1Volume], second: list[V1Volume]) -> bool:
    """Compare pod volumes by name and secret source, ignoring list order"""
    if _differs("Volume lengths", len(first), len(second)):
        return False

    # The API server does not guarantee volume order, so compare by name
    for index, (f_vol, s_vol) in enumerate(
        zip(sorted(first, key=_volume_name), sorted(second, key=_volume_name), strict=True)
    ):
        if _differs(f"Pod volume names (volume {index})", f_vol.name, s_vol.name):
            return False
        f_secret = f_vol.secret
        s_secret = s_vol.secret
        if f_secret is not None and s_secret is not None:
            if _differs(
                f"Volume source secret names (volume {index})",
                f_secret.secret_name,
                s_secret.secret_name,
            ):
                return False
        elif _presence_differs(f"volume source secrets (volume {index})", f_secret, s_secret):
            return False
    return True


def equal_containers(first: V1Container, second: V1Container) -> bool:
    """Compare the reconciled fields of a single container"""
    if _differs("Container names", first.name, second.name):
        return False

    if _differs("Container images", first.image, second.image):
        return False

    if _differs("Image pull policies", first.image_pull_policy, second.image_pull_policy):
        return False

    if not equal_args(first.args, second.args):
        return False

    if not equal_probes("liveness", first.liveness_probe, second.liveness_probe):
        return False

    if not equal_probes("readiness", first.readiness_probe, second.readiness_probe):
        return False

    if not equal_security_contexts(first.security_context, second.security_context):
        return False

    if not equal_resources(first.resources, second.resources):
        return False

    if not equal_env(first.env or [], second.env or []):
        return False

    return equal_volume_mounts(first.volume_mounts or [], second.volume_mounts or [])


def equal_args(first: list[str] | None, second: list[str] | None) -> bool:
    """Args are an ordered sequence; both None is equal"""
    if first is None or second is None:
        return not _presence_differs("args", first, second)
    if _differs("Args length", len(first), len(second)):
        return False
    return not _differs("Args", list(first), list(second))


def _exec_command(probe: V1Probe) -> list[str] | None:
    return probe._exec.command if probe._exec is not None else None


def equal_probes(kind: str, first: V1Probe | None, second: V1Probe | None) -> bool:
    """Compare exec command, initial delay and timeout of a probe"""
    if first is None or second is None:
        return not _presence_differs(f"{kind} probes", first, second)

    if _differs(
        f"Exec command in {kind} probes", _exec_command(first), _exec_command(second)
    ):
        return False

    if _differs(
        f"Initial delay seconds in {kind} probes",
        first.initial_delay_seconds,
        second.initial_delay_seconds,
    ):
        return False

    return not _differs(
        f"Timeout seconds in {kind} probes", first.timeout_seconds, second.timeout_seconds
    )


def equal_security_contexts(
    first: V1SecurityContext | None, second: V1SecurityContext | None
) -> bool:
    """Compare container security contexts field by field"""
    if first is None or second is None:
        return not _presence_differs("container security contexts", first, second)

    for field_name in SECURITY_CONTEXT_FIELDS:
        f_value = getattr(first, field_name)
        s_value = getattr(second, field_name)
        if f_value is None and s_value is None:
            continue
        if _presence_differs(f"security context {field_name}", f_value, s_value):
            return False
        if _differs(f"Container security context {field_name}", f_value, s_value):
            return False
    return True


def normalized_quantity(resources: V1ResourceRequirements | None, block: str, name: str) -> str:
    """Decimal string of a resource quantity; a missing quantity is zero"""
    values = getattr(resources, block, None) or {}
    raw = values.get(name)
    quantity = parse_quantity(raw) if raw is not None else Decimal(0)
    return format(quantity.normalize(), "f")


def equal_resources(
    first: V1ResourceRequirements | None, second: V1ResourceRequirements | None
) -> bool:
    """Compare cpu, memory and ephemeral-storage requests/limits by value"""
    for block, name in RESOURCE_QUANTITIES:
        if _differs(
            f"Resource {block} {name}",
            normalized_quantity(first, block, name),
            normalized_quantity(second, block, name),
        ):
            return False
    return True


def equal_env(first: list[V1EnvVar], second: list[V1EnvVar]) -> bool:
    """Compare env vars positionally by name, value and field reference"""
    if _differs("Environment var length", len(first), len(second)):
        return False

    for index, (f_env, s_env) in enumerate(zip(first, second, strict=True)):
        if _differs(f"Environment names (env {index})", f_env.name, s_env.name):
            return False
        if _differs(f"Environment values (env {index})", f_env.value, s_env.value):
            return False

        f_from = f_env.value_from
        s_from = s_env.value_from
        if f_from is not None and s_from is not None:
            f_ref = f_from.field_ref
            s_ref = s_from.field_ref
            if f_ref is not None and s_ref is not None:
                if _differs(f"Field path in env {index}", f_ref.field_path, s_ref.field_path):
                    return False
            elif _presence_differs(f"env field refs (env {index})", f_ref, s_ref):
                return False
        elif _presence_differs(f"env value sources (env {index})", f_from, s_from):
            return False
    return True


def equal_volume_mounts(first: list[V1VolumeMount], second: list[V1VolumeMount]) -> bool:
    """Volume mounts must match exactly, in order"""
    if _differs("Volume mount lengths", len(first), len(second)):
        return False
    for index, (f_mount, s_mount) in enumerate(zip(first, second, strict=True)):
        if _differs(f"Volume mounts (mount {index})", f_mount, s_mount):
            return False
    return True
