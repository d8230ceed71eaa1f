"""
Operator settings.

Settings come from an optional YAML file (``OPERATOR_CONFIG``) and from
environment variables; environment variables win over the file.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import BaseModel, Field

from nimbletools_cert_manager_operator.resources import DEFAULT_IMAGE_REGISTRY, IMAGE_ENV_VARS

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "nimbletools-cert-manager"
SERVICE_ACCOUNT_NAMESPACE_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")

# Environment variable -> settings field
ENV_SETTINGS = {
    "DEPLOY_NAMESPACE": "deploy_namespace",
    "DEFAULT_IMAGE_REGISTRY": "default_image_registry",
    "RECONCILE_INTERVAL": "reconcile_interval",
    "SMOKE_CHECK_ENABLED": "smoke_check",
    "LOG_LEVEL": "log_level",
}


class OperatorSettings(BaseModel):
    """Runtime configuration of the operator"""

    deploy_namespace: str = Field(
        default=DEFAULT_NAMESPACE, description="Namespace the cert-manager workloads run in"
    )
    default_image_registry: str = Field(
        default=DEFAULT_IMAGE_REGISTRY, description="Registry used when the CR sets none"
    )
    image_overrides: dict[str, str] = Field(
        default_factory=dict, description="Full image references keyed by image name"
    )
    reconcile_interval: float = Field(
        default=300.0, gt=0, description="Seconds between periodic drift checks"
    )
    smoke_check: bool = Field(default=True, description="Create the smoke-check Issuer")
    log_level: str = Field(default="INFO", description="Root log level")


def get_operator_namespace(environ: Mapping[str, str]) -> str:
    """
    Get the operator's namespace.

    When running in-cluster, reads from the service account namespace file.
    Falls back to environment variable or default for local development.
    """
    try:
        with SERVICE_ACCOUNT_NAMESPACE_PATH.open() as f:
            namespace = f.read().strip()
            logger.info("Detected operator namespace from service account: %s", namespace)
            return namespace
    except FileNotFoundError:
        namespace = environ.get("NAMESPACE", DEFAULT_NAMESPACE)
        logger.info("Using namespace from environment/default: %s", namespace)
        return namespace


def load_config_file(config_path: str) -> dict[str, Any]:
    """Load operator settings from a YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise RuntimeError(
            f"Operator configuration file not found at: {config_path}. "
            "Please ensure the OPERATOR_CONFIG environment variable points to a valid file."
        )

    logger.info("Loading operator config from: %s", config_path)
    with path.open() as f:
        result = yaml.safe_load(f) or {}

    if not isinstance(result, dict):
        raise ValueError(f"Operator configuration in {config_path} must be a mapping")
    return cast("dict[str, Any]", result)


def load_settings(environ: Mapping[str, str] | None = None) -> OperatorSettings:
    """Build operator settings from the config file and the environment"""
    if environ is None:
        environ = os.environ

    values: dict[str, Any] = {}
    config_path = environ.get("OPERATOR_CONFIG", "")
    if config_path:
        values.update(load_config_file(config_path))

    for env_var, setting in ENV_SETTINGS.items():
        if environ.get(env_var):
            values[setting] = environ[env_var]

    image_overrides = dict(values.get("image_overrides") or {})
    for env_var, image_name in IMAGE_ENV_VARS.items():
        if environ.get(env_var):
            image_overrides[image_name] = environ[env_var]
    values["image_overrides"] = image_overrides

    if "deploy_namespace" not in values:
        values["deploy_namespace"] = get_operator_namespace(environ)

    return OperatorSettings.model_validate(values)
