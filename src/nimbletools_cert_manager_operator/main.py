#!/usr/bin/env python3
"""
NimbleTools cert-manager Operator for Kubernetes
"""

import asyncio
import logging
from collections.abc import Iterable, MutableMapping
from datetime import UTC, datetime
from typing import Any

import kopf
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from nimbletools_cert_manager_operator._version import __version__
from nimbletools_cert_manager_operator.config import load_settings
from nimbletools_cert_manager_operator.exceptions import ClusterWriteError
from nimbletools_cert_manager_operator.models import (
    CertManagerConfigSpec,
    ReconcileAction,
    ReconcileResult,
)
from nimbletools_cert_manager_operator.reconciler import remove_workload, run_reconcile_pass
from nimbletools_cert_manager_operator.resources import (
    WorkloadKind,
    get_template,
    smoke_check_issuer,
)

settings = load_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


# Load Kubernetes config
try:
    config.load_incluster_config()
    logger.info("Loaded in-cluster Kubernetes config")
except config.ConfigException:
    config.load_kube_config()
    logger.info("Loaded local Kubernetes config")

# Initialize Kubernetes clients
k8s_apps = client.AppsV1Api()
k8s_custom = client.CustomObjectsApi()

CRD_GROUP = "operator.nimbletools.dev"
CRD_VERSION = "v1"
CRD_PLURAL = "certmanagerconfigs"

# Seconds before kopf re-runs a pass that lost an optimistic-concurrency race
RETRY_DELAY = 10


def ensure_smoke_check_issuer(namespace: str) -> bool:
    """Create the self-signed smoke-check Issuer, tolerating an existing one"""
    try:
        k8s_custom.create_namespaced_custom_object(
            group="cert-manager.io",
            version="v1",
            namespace=namespace,
            plural="issuers",
            body=smoke_check_issuer(namespace),
        )
        logger.info("Created smoke-check issuer in %s", namespace)
        return True
    except ApiException as e:
        if e.status == 409:
            logger.debug("Smoke-check issuer already exists in %s", namespace)
            return True
        # cert-manager CRDs may not be served yet right after the first install
        logger.warning("Failed to create smoke-check issuer in %s: %s", namespace, e.reason)
        return False


def _ready_condition(ready: bool, reason: str, message: str) -> dict[str, Any]:
    return {
        "type": "Ready",
        "status": "True" if ready else "False",
        "lastTransitionTime": datetime.now(UTC).isoformat(),
        "reason": reason,
        "message": message,
    }


def build_status(results: Iterable[ReconcileResult]) -> dict[str, Any]:
    """Summarize reconcile results as CertManagerConfig status"""
    results = list(results)
    workloads = {result.name: result.summary() for result in results}
    failed = [result for result in results if not result.ok]

    if failed:
        conflict = any(result.action is ReconcileAction.CONFLICT for result in failed)
        return {
            "phase": "Failed",
            "namespace": settings.deploy_namespace,
            "workloads": workloads,
            "conditions": [
                _ready_condition(
                    False,
                    "Conflict" if conflict else "ReconcileFailed",
                    "; ".join(result.detail for result in failed),
                )
            ],
        }

    return {
        "phase": "Running",
        "namespace": settings.deploy_namespace,
        "workloads": workloads,
        "conditions": [
            _ready_condition(True, "Reconciled", "cert-manager workloads are up to date")
        ],
    }


async def reconcile_all(
    body: Any, spec: Any, name: str, patch: Any, logger: Any
) -> list[ReconcileResult]:
    """
    Run a reconciliation pass for every cert-manager workload.

    Workloads are independent, so their passes run concurrently. The outcome
    is written to the CertManagerConfig status.

    Raises:
        kopf.PermanentError: Invalid spec, conflicting install or unrecoverable error
        kopf.TemporaryError: Every failure was a stale write that a new pass can fix
    """
    try:
        cm_config = CertManagerConfigSpec.model_validate(dict(spec))
    except ValidationError as e:
        raise kopf.PermanentError(f"Invalid CertManagerConfig {name}: {e}") from e

    results = await asyncio.gather(
        *(
            asyncio.to_thread(run_reconcile_pass, k8s_apps, kind, cm_config, body, settings)
            for kind in WorkloadKind
        )
    )

    status: MutableMapping[str, Any] = patch.status
    status.update(build_status(results))

    failed = [result for result in results if not result.ok]
    if failed:
        message = "; ".join(result.detail for result in failed)
        logger.error(f"Failed to reconcile CertManagerConfig {name}: {message}")
        if all(result.retryable for result in failed):
            raise kopf.TemporaryError(message, delay=RETRY_DELAY)
        raise kopf.PermanentError(message)

    for result in results:
        if result.action is not ReconcileAction.NOOP:
            logger.info(f"{result.detail} in {result.namespace}")

    if settings.smoke_check:
        await asyncio.to_thread(ensure_smoke_check_issuer, settings.deploy_namespace)

    return results


@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
async def reconcile_certmanagerconfig(body, spec, name, patch, logger, **_kwargs):  # type: ignore
    """Handle CertManagerConfig creation, updates and operator restarts"""
    logger.info(f"Reconciling CertManagerConfig: {name}")
    await reconcile_all(body, spec, name, patch, logger)
    logger.info(f"CertManagerConfig {name} reconciled")


@kopf.timer(
    CRD_GROUP,
    CRD_VERSION,
    CRD_PLURAL,
    interval=settings.reconcile_interval,
    initial_delay=settings.reconcile_interval,
)
async def check_certmanagerconfig_drift(body, spec, name, patch, logger, **_kwargs):  # type: ignore
    """Periodically repair drift of the managed deployments"""
    results = await reconcile_all(body, spec, name, patch, logger)
    changed = [result.name for result in results if result.action is not ReconcileAction.NOOP]
    if changed:
        logger.info(f"Repaired drift for CertManagerConfig {name}: {', '.join(changed)}")


@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
async def delete_certmanagerconfig(name, logger, **_kwargs):  # type: ignore
    """Handle CertManagerConfig deletion"""
    logger.info(f"Deleting CertManagerConfig: {name}")

    try:
        for kind in WorkloadKind:
            deployment_name = get_template(kind).name
            try:
                removed = await asyncio.to_thread(
                    remove_workload, k8s_apps, deployment_name, settings.deploy_namespace
                )
                if removed:
                    logger.info(f"Deleted deployment {deployment_name}")
            except ClusterWriteError as e:
                logger.warning(f"Failed to delete deployment {deployment_name}: {e.message}")

        logger.info(f"Successfully deleted CertManagerConfig {name}")

    except Exception as e:
        logger.error(f"Error during CertManagerConfig {name} deletion (non-fatal): {e}")
        # Don't raise - allow finalizer to be removed even if cleanup had issues


def main() -> None:
    """Main entry point for the operator."""

    logger.info("Starting NimbleTools cert-manager Operator %s...", __version__)
    logger.info("Managing cert-manager workloads in namespace %s", settings.deploy_namespace)

    # Run with health endpoints enabled
    kopf.run(
        clusterwide=True,
        liveness_endpoint="http://0.0.0.0:8080/healthz",
    )


if __name__ == "__main__":
    main()
