"""
Error classes for docker-ops-manager.

The runtime adapter translates Docker SDK failures into two families so that
callers can classify them at the retry boundary:

- TransientRuntimeError: safe to retry (daemon busy, connection reset, 5xx)
- DefinitiveRuntimeError: do not retry (invalid spec, missing image, 4xx)

Everything else is a domain error raised by the orchestrator itself. Every
error carries the target name, the attempted operation and the underlying
cause so that batch reports and the CLI can render one precise line per
failed target.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from docker_ops_manager.core.batch import BatchResult


class DockerOpsError(Exception):
    """Base exception for docker-ops-manager."""

    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        target: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.target = target
        self.operation = operation
        self.cause = cause

    def __str__(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.target:
            parts.append(f"'{self.target}'")
        prefix = " ".join(parts)
        text = f"{prefix}: {self.message}" if prefix else self.message
        if self.cause is not None:
            text = f"{text} (cause: {self.cause})"
        return text


class ValidationError(DockerOpsError):
    """Invalid descriptor, request or spec file."""

    kind = "validation"


class AlreadyExists(DockerOpsError):
    """A container or record already exists and force was not given."""

    kind = "already-exists"


class NotFound(DockerOpsError):
    """The runtime has no entity with the requested name."""

    kind = "not-found"


class NotPreviouslyGenerated(DockerOpsError):
    """install was asked for a name that has no tracked source."""

    kind = "not-generated"


class RuntimeAdapterError(DockerOpsError):
    """Base for failures reported by the container runtime."""

    kind = "runtime"
    retryable = False


class TransientRuntimeError(RuntimeAdapterError):
    """
    Transient runtime failure - safe to retry.

    Examples:
    - Docker daemon busy or restarting
    - Connection reset / read timeout on the daemon socket
    - Removal already in progress (409)
    """

    kind = "transient"
    retryable = True


class DefinitiveRuntimeError(RuntimeAdapterError):
    """
    Definitive runtime failure - do not retry.

    Examples:
    - Image not found in registry
    - Invalid container configuration
    - Port already allocated
    """

    kind = "definitive"


class ReadinessTimeout(DockerOpsError):
    """The container did not become ready in time. Recorded, not fatal."""

    kind = "readiness-timeout"


class ReadinessUnhealthy(DockerOpsError):
    """The container's health check reported unhealthy."""

    kind = "unhealthy"


class PartialFailure(DockerOpsError):
    """Some entities of a removal or batch did not reach the desired state."""

    kind = "partial"

    def __init__(
        self,
        message: str,
        *,
        remaining: Sequence[str] = (),
        removed: Sequence[str] = (),
        result: Optional["BatchResult"] = None,
        target: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, target=target, operation=operation, cause=cause)
        self.remaining: List[str] = list(remaining)
        self.removed: List[str] = list(removed)
        self.result = result


class StateCorruption(DockerOpsError):
    """The persisted state document could not be read. Always fatal."""

    kind = "state-corruption"


__all__ = [
    "AlreadyExists",
    "DefinitiveRuntimeError",
    "DockerOpsError",
    "NotFound",
    "NotPreviouslyGenerated",
    "PartialFailure",
    "ReadinessTimeout",
    "ReadinessUnhealthy",
    "RuntimeAdapterError",
    "StateCorruption",
    "TransientRuntimeError",
    "ValidationError",
]
