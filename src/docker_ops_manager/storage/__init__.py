"""
Storage module for docker-ops-manager.

This module persists tracked container records in a JSON state document.
"""

from __future__ import annotations

from docker_ops_manager.storage.state_store import (
    GlobalState,
    Readiness,
    StateStore,
    Status,
    TrackedRecord,
)

__all__ = ["GlobalState", "Readiness", "StateStore", "Status", "TrackedRecord"]
