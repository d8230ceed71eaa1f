"""
Reconciliation of a single cert-manager workload.

A pass reads the cluster, decides on exactly one of no-op, create, update or
conflict, and writes at most once.
"""

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from kubernetes.client.models import V1Deployment, V1OwnerReference

from nimbletools_cert_manager_operator.config import OperatorSettings
from nimbletools_cert_manager_operator.equality import equal_deployments
from nimbletools_cert_manager_operator.exceptions import (
    ClusterWriteError,
    ConflictError,
    OwnershipError,
    ReconcileError,
    handle_write_errors,
)
from nimbletools_cert_manager_operator.finder import find_candidates
from nimbletools_cert_manager_operator.models import (
    Candidate,
    CertManagerConfigSpec,
    ReconcileAction,
    ReconcileResult,
)
from nimbletools_cert_manager_operator.resources import WorkloadKind, get_template
from nimbletools_cert_manager_operator.spec_builder import build_deployment
from nimbletools_cert_manager_operator.store import DeploymentStore

logger = logging.getLogger(__name__)


def build_owner_reference(owner: Mapping[str, Any], namespace: str) -> V1OwnerReference:
    """
    Build a controller owner reference pointing at the CertManagerConfig.

    Args:
        owner: Body of the owning custom resource
        namespace: Namespace of the owned Deployment

    Raises:
        OwnershipError: If the owner lacks apiVersion, kind, name or uid, or is
            namespaced in a namespace other than ``namespace``
    """
    metadata = owner.get("metadata") or {}
    fields = {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
    }
    missing = [key for key, value in fields.items() if not value]
    if missing:
        raise OwnershipError(
            f"Cannot set owner reference, owner is missing {', '.join(missing)}",
            resource=f"{fields['kind']}:{fields['name']}",
        )

    # The garbage collector treats a cross-namespace owner as missing
    owner_namespace = metadata.get("namespace")
    if owner_namespace and owner_namespace != namespace:
        raise OwnershipError(
            f"Cannot set owner reference, owner namespace {owner_namespace} "
            f"differs from {namespace}: cross-namespace owner references are disallowed",
            resource=f"{fields['kind']}:{fields['name']}",
        )

    return V1OwnerReference(
        api_version=fields["apiVersion"],
        kind=fields["kind"],
        name=fields["name"],
        uid=fields["uid"],
        controller=True,
        block_owner_deletion=True,
    )


def resolve_identity(desired: V1Deployment, candidates: Iterable[Candidate]) -> Candidate | None:
    """
    Pick the candidate that is the managed workload.

    Returns:
        The candidate with the desired name and namespace, or None

    Raises:
        ConflictError: If any candidate has a different identity
    """
    name = desired.metadata.name
    namespace = desired.metadata.namespace
    existing = None
    for candidate in candidates:
        if candidate.name != name or candidate.namespace != namespace:
            error = ConflictError(name, candidate.name, candidate.namespace)
            logger.warning(error.message)
            raise error
        logger.debug("Candidate matches name and namespace: %s", candidate.key)
        existing = candidate
    return existing


@handle_write_errors("create")
def _create(apps_api: DeploymentStore, *, name: str, namespace: str, body: V1Deployment) -> None:
    apps_api.create_namespaced_deployment(namespace=namespace, body=body)


@handle_write_errors("update")
def _replace(apps_api: DeploymentStore, *, name: str, namespace: str, body: V1Deployment) -> None:
    apps_api.replace_namespaced_deployment(name=name, namespace=namespace, body=body)


@handle_write_errors("delete")
def _delete(apps_api: DeploymentStore, *, name: str, namespace: str) -> None:
    apps_api.delete_namespaced_deployment(name=name, namespace=namespace)


def reconcile_workload(
    apps_api: DeploymentStore,
    desired: V1Deployment,
    candidates: Iterable[Candidate],
    owner: Mapping[str, Any],
) -> ReconcileResult:
    """
    Converge one deployment towards ``desired``.

    Raises:
        ConflictError: A foreign deployment runs the same workload
        OwnershipError: The owner reference could not be built
        ClusterWriteError: The create or update call failed
    """
    name = desired.metadata.name
    namespace = desired.metadata.namespace
    logger.debug("Working on deploy logic for %s/%s", namespace, name)

    existing = resolve_identity(desired, candidates)

    body = copy.deepcopy(desired)
    body.metadata.owner_references = [build_owner_reference(owner, namespace)]

    if existing is None:
        _create(apps_api, name=name, namespace=namespace, body=body)
        logger.info("Created deployment %s/%s", namespace, name)
        return ReconcileResult(
            ReconcileAction.CREATED, name, namespace, f"Deployment {name} created"
        )

    if equal_deployments(desired, existing.deployment):
        logger.debug("Deploys are equal, no changes needed: %s/%s", namespace, name)
        return ReconcileResult(
            ReconcileAction.NOOP, name, namespace, f"Deployment {name} is up to date"
        )

    body.metadata.resource_version = existing.deployment.metadata.resource_version
    _replace(apps_api, name=name, namespace=namespace, body=body)
    logger.info("Updated deployment %s/%s", namespace, name)
    return ReconcileResult(ReconcileAction.UPDATED, name, namespace, f"Deployment {name} updated")


def reconcile(
    apps_api: DeploymentStore,
    kind: WorkloadKind,
    config: CertManagerConfigSpec,
    owner: Mapping[str, Any],
    settings: OperatorSettings,
) -> ReconcileResult:
    """Build, discover and reconcile one component. Errors propagate."""
    template = get_template(kind)
    desired = build_deployment(kind, config, settings.deploy_namespace, settings)
    candidates = find_candidates(apps_api, template.label_selector, template.image_name)
    logger.debug("Found %d similar deployments for %s", len(candidates), template.name)
    return reconcile_workload(apps_api, desired, candidates, owner)


def run_reconcile_pass(
    apps_api: DeploymentStore,
    kind: WorkloadKind,
    config: CertManagerConfigSpec,
    owner: Mapping[str, Any],
    settings: OperatorSettings,
) -> ReconcileResult:
    """Like reconcile() but reports conflicts and errors as a result"""
    template = get_template(kind)
    try:
        return reconcile(apps_api, kind, config, owner, settings)
    except ConflictError as e:
        return ReconcileResult(
            ReconcileAction.CONFLICT, template.name, settings.deploy_namespace, e.message, e
        )
    except ReconcileError as e:
        logger.error("Failed to reconcile %s: %s", template.name, e.message)
        return ReconcileResult(
            ReconcileAction.ERROR, template.name, settings.deploy_namespace, e.message, e
        )


def remove_workload(apps_api: DeploymentStore, name: str, namespace: str) -> bool:
    """
    Delete a managed deployment.

    Returns:
        True if a deployment was deleted, False if it did not exist

    Raises:
        ClusterWriteError: If the delete failed for any other reason
    """
    try:
        _delete(apps_api, name=name, namespace=namespace)
    except ClusterWriteError as e:
        if e.status_code == 404:
            logger.debug("Deployment %s/%s already removed", namespace, name)
            return False
        raise
    logger.info("Deployment removed: %s/%s", namespace, name)
    return True
