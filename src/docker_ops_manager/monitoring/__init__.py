"""
Monitoring module for docker-ops-manager.

This module provides readiness waits and reconciliation of tracked state
against the container runtime.
"""

from __future__ import annotations

from docker_ops_manager.monitoring.readiness import ReadinessMonitor, ReadinessResult, WatchState, resolve_timeout
from docker_ops_manager.monitoring.reconciler import ReconciliationSweeper

__all__ = ["ReadinessMonitor", "ReadinessResult", "ReconciliationSweeper", "WatchState", "resolve_timeout"]
