"""
Discovery of deployments that may already run a managed workload.
"""

import logging

from kubernetes.client.models import V1Deployment
from kubernetes.client.rest import ApiException

from nimbletools_cert_manager_operator.exceptions import ClusterQueryError
from nimbletools_cert_manager_operator.models import Candidate, DiscoverySignal
from nimbletools_cert_manager_operator.store import DeploymentStore

logger = logging.getLogger(__name__)


def find_candidates(
    apps_api: DeploymentStore, label_selector: str, image_fragment: str
) -> list[Candidate]:
    """
    Find deployments in any namespace that may represent the workload.

    Two signals are used: deployments matching ``label_selector`` catch
    correctly-labelled prior installs, and deployments whose image contains
    ``image_fragment`` catch installs that were created by hand or whose labels
    drifted. Results are deduplicated by name/namespace.

    A failing signal is logged and skipped.

    Raises:
        ClusterQueryError: If neither signal could be queried
    """
    logger.debug("Finding preexisting deployments for image %s", image_fragment)
    candidates: dict[str, Candidate] = {}
    failures: list[ApiException] = []

    try:
        labelled = apps_api.list_deployment_for_all_namespaces(label_selector=label_selector)
    except ApiException as e:
        logger.error("Error retrieving deployments by label %s: %s", label_selector, e.reason)
        failures.append(e)
    else:
        for deploy in labelled.items:
            logger.debug(
                "Found deployment by labels: %s/%s",
                deploy.metadata.namespace,
                deploy.metadata.name,
            )
            _add(candidates, deploy, DiscoverySignal.LABEL)

    try:
        everything = apps_api.list_deployment_for_all_namespaces()
    except ApiException as e:
        logger.error("Error retrieving deployments: %s", e.reason)
        failures.append(e)
    else:
        for deploy in everything.items:
            image = _first_image(deploy)
            if image is not None and image_fragment in image:
                logger.debug(
                    "Found deployment by image name: %s/%s (%s)",
                    deploy.metadata.namespace,
                    deploy.metadata.name,
                    image,
                )
                _add(candidates, deploy, DiscoverySignal.IMAGE)

    if len(failures) == 2:
        raise ClusterQueryError(
            f"Failed to list deployments for {image_fragment}: {failures[-1].reason}",
            resource=f"deployments:{label_selector}",
            api_exception=failures[-1],
        )

    logger.debug("Found %d candidate deployments for %s", len(candidates), image_fragment)
    return list(candidates.values())


def _add(candidates: dict[str, Candidate], deploy: V1Deployment, signal: DiscoverySignal) -> None:
    candidate = Candidate(deployment=deploy)
    existing = candidates.setdefault(candidate.key, candidate)
    existing.signals.add(signal)


def _first_image(deploy: V1Deployment) -> str | None:
    spec = deploy.spec
    if spec is None or spec.template is None or spec.template.spec is None:
        return None
    containers = spec.template.spec.containers or []
    if not containers:
        return None
    return containers[0].image
