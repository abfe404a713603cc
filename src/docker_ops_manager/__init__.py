"""
docker-ops-manager - Lifecycle manager for spec-defined Docker containers.

This package provides:
- Container creation from compose-style YAML specs
- Readiness waits driven by container health checks
- A persistent JSON record of every tracked container
- Verified removal and reconciliation of stale records
- Multi-target batch operations with per-target reporting
"""

from __future__ import annotations

__version__ = "1.0.0"

# Core exports
from docker_ops_manager.config import Settings
from docker_ops_manager.core.orchestrator import LifecycleOrchestrator, OperationRequest
from docker_ops_manager.core.runtime import DockerRuntimeAdapter
from docker_ops_manager.loader import ComposeSpecLoader
from docker_ops_manager.storage.state_store import StateStore
from docker_ops_manager.utils.logger import get_logger

__all__ = [
    "ComposeSpecLoader",
    "DockerRuntimeAdapter",
    "LifecycleOrchestrator",
    "OperationRequest",
    "Settings",
    "StateStore",
    "get_logger",
    "__version__",
]
