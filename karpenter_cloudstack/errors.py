"""Exception hierarchy for the CloudStack provider.

Every error raised by this package derives from ``CloudStackProviderError``
so the reconciliation loop can separate provider failures from bugs.
"""

from __future__ import annotations


class CloudStackProviderError(Exception):
    """Base class for all provider errors."""


# =============================================================================
# Lookup Errors
# =============================================================================


class NotFoundError(CloudStackProviderError):
    """A zone, network, template, offering or instance does not exist."""


class NodeClaimNotFoundError(NotFoundError):
    """The instance backing a node claim is gone."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"instance {instance_id} not found")
        self.instance_id = instance_id


class NoSelectorMatchError(CloudStackProviderError):
    """Selector terms produced no usable resource after filtering."""

    def __init__(self, kind: str, zone: str) -> None:
        super().__init__(f"no {kind}s matched the selector terms in zone {zone}")
        self.kind = kind
        self.zone = zone


# =============================================================================
# Backend Errors
# =============================================================================


class BackendError(CloudStackProviderError):
    """An inventory call failed (network, auth, server error)."""

    def __init__(self, operation: str, cause: BaseException | str) -> None:
        super().__init__(f"{operation}: {cause}")
        self.operation = operation
        self.cause = cause


class CloudStackAPIError(BackendError):
    """Error body returned by the CloudStack API."""

    def __init__(self, command: str, status: int, error_code: int | None, message: str) -> None:
        detail = f"HTTP {status}"
        if error_code is not None:
            detail += f" (errorcode {error_code})"
        super().__init__(command, f"{detail}: {message}")
        self.status = status
        self.error_code = error_code
        self.message = message


class AsyncJobFailedError(CloudStackProviderError):
    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(f"async job {job_id} failed: {message}")
        self.job_id = job_id
        self.message = message


class WaitTimeoutError(CloudStackProviderError, TimeoutError):
    """A poll loop exceeded its deadline.

    The remote operation may still be in progress; nothing is rolled back.
    """


# =============================================================================
# Configuration Errors
# =============================================================================


class OptionsError(CloudStackProviderError):
    """Startup options are missing or malformed."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = problems


class ConfigValidationError(CloudStackProviderError):
    """A NodeClass references infrastructure that is unusable."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


# =============================================================================
# Orchestrator-facing Errors
# =============================================================================


class InsufficientCapacityError(CloudStackProviderError):
    pass


class NodeClassNotReadyError(CloudStackProviderError):
    pass


class CreateError(CloudStackProviderError):
    """Node creation failed before reaching the backend."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class InvalidProviderIDError(CloudStackProviderError, ValueError):
    """A provider ID could not be parsed into an instance ID."""
