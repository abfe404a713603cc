"""
Core business logic for docker-ops-manager.

This module contains the workload model, the runtime adapter, the removal
protocol and the lifecycle orchestrator.
"""

from __future__ import annotations

from docker_ops_manager.core.batch import BatchExecutor, BatchResult, TargetOutcome
from docker_ops_manager.core.descriptor import WorkloadDescriptor, descriptor_from_dict
from docker_ops_manager.core.orchestrator import (
    CleanupTarget,
    LifecycleOrchestrator,
    OperationKind,
    OperationOutcome,
    OperationRequest,
)
from docker_ops_manager.core.removal import RetryPolicy, remove_and_verify
from docker_ops_manager.core.runtime import DockerRuntimeAdapter, HealthStatus, RuntimeAdapter

__all__ = [
    "BatchExecutor",
    "BatchResult",
    "CleanupTarget",
    "DockerRuntimeAdapter",
    "HealthStatus",
    "LifecycleOrchestrator",
    "OperationKind",
    "OperationOutcome",
    "OperationRequest",
    "RetryPolicy",
    "RuntimeAdapter",
    "TargetOutcome",
    "WorkloadDescriptor",
    "descriptor_from_dict",
    "remove_and_verify",
]
