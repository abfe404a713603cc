"""
Utilities module for docker-ops-manager.

This module provides common utilities like logging configuration.
"""

from __future__ import annotations

from docker_ops_manager.utils.logger import get_logger, logger

__all__ = ["get_logger", "logger"]
