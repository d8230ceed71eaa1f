"""
Error handling utilities and custom exceptions for the cert-manager operator
"""

import functools
import logging
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from kubernetes.client.rest import ApiException

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """Base exception for reconciliation passes"""

    retryable = False

    def __init__(self, message: str, operation: str, resource: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.resource = resource


class ClusterQueryError(ReconcileError):
    """Discovery could not observe the cluster"""

    def __init__(
        self,
        message: str,
        resource: str,
        api_exception: ApiException | None = None,
    ) -> None:
        super().__init__(message, "discover", resource)
        self.api_exception = api_exception


class ConflictError(ReconcileError):
    """A foreign deployment already runs the workload under another identity"""

    def __init__(self, name: str, conflict_name: str, conflict_namespace: str) -> None:
        message = (
            f"The service {name} is already deployed as {conflict_namespace}/{conflict_name}. "
            f"Please remove it if you want this version of {name} to be deployed."
        )
        super().__init__(message, "reconcile", f"deployment:{name}")
        self.conflict_name = conflict_name
        self.conflict_namespace = conflict_namespace


class ClusterWriteError(ReconcileError):
    """Create, update or delete of a deployment failed"""

    def __init__(
        self,
        message: str,
        operation: str,
        resource: str,
        api_exception: ApiException | None = None,
    ) -> None:
        super().__init__(message, operation, resource)
        self.api_exception = api_exception
        self.status_code = api_exception.status if api_exception else None
        # A stale resourceVersion is resolved by re-running the pass from a fresh read
        self.retryable = self.status_code == 409


class OwnershipError(ReconcileError):
    """The owner reference for a managed deployment could not be built"""

    def __init__(self, message: str, resource: str | None = None) -> None:
        super().__init__(message, "set owner reference", resource)


def handle_write_errors(operation: str) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator converting Kubernetes API exceptions raised by a write into ClusterWriteError.

    The wrapped function must take the target deployment name and namespace as
    ``name`` and ``namespace`` keyword arguments.

    Args:
        operation: Description of the operation (e.g., "create", "update")
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except ApiException as e:
                resource = f"deployment:{kwargs.get('namespace')}/{kwargs.get('name')}"
                error_msg = f"Kubernetes API error while trying to {operation} {resource}"

                if e.status == 404:
                    logger.info("%s: Resource not found (404)", error_msg)
                elif e.status == 409:
                    logger.info("%s: Conflict (409), pass should be retried", error_msg)
                elif e.status in (400, 401, 403, 422):
                    logger.warning("%s: Client error (%s): %s", error_msg, e.status, e.reason)
                else:
                    logger.error("%s: Server error (%s): %s", error_msg, e.status, e.reason)
                    if e.body:
                        logger.error("Error details: %s", e.body)

                raise ClusterWriteError(
                    message=f"Failed to {operation} {resource}: {e.reason}",
                    operation=operation,
                    resource=resource,
                    api_exception=e,
                ) from e

        return wrapper

    return decorator
