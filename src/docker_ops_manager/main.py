"""
Process entry for docker-ops-manager.

Wires settings, logging, the state store and the Docker runtime adapter
together, runs one operation and then the exit reconciliation sweep.
"""

from __future__ import annotations

import signal
from typing import Callable, Optional

from docker_ops_manager.config import Settings
from docker_ops_manager.core.orchestrator import ConfirmCallback, LifecycleOrchestrator
from docker_ops_manager.core.runtime import DockerRuntimeAdapter, RuntimeAdapter
from docker_ops_manager.errors import DockerOpsError, StateCorruption
from docker_ops_manager.storage.state_store import StateStore
from docker_ops_manager.utils.logger import add_file_handler, logger

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_STATE_CORRUPTION = 3


def build_store(settings: Settings) -> StateStore:
    return StateStore(
        settings.state_file,
        max_container_history=settings.max_container_history,
        max_operation_history=settings.max_operation_history,
        config_snapshot=settings.snapshot(),
    )


def build_orchestrator(
    settings: Settings,
    *,
    runtime: Optional[RuntimeAdapter] = None,
    store: Optional[StateStore] = None,
    confirm: Optional[ConfirmCallback] = None,
) -> LifecycleOrchestrator:
    """Create an orchestrator over the Docker daemon (or the given runtime)."""
    store = store or build_store(settings)
    store.load()
    runtime = runtime or DockerRuntimeAdapter()
    return LifecycleOrchestrator(runtime, store, settings=settings, confirm=confirm)


def exit_sweep(orchestrator: LifecycleOrchestrator) -> None:
    """Reconcile the state file with the runtime before the process exits."""
    try:
        pruned = orchestrator.sweeper.refresh()
    except StateCorruption:
        raise
    except DockerOpsError as e:
        logger.warning(f"Exit reconciliation skipped: {e}")
        return
    if pruned:
        logger.info(f"Exit reconciliation removed {len(pruned)} stale record(s)")


def run(
    operation: Callable[[LifecycleOrchestrator], int],
    settings: Optional[Settings] = None,
    *,
    runtime: Optional[RuntimeAdapter] = None,
    confirm: Optional[ConfirmCallback] = None,
    sweep_on_exit: bool = True,
) -> int:
    """
    Run ``operation`` against a freshly wired orchestrator.

    SIGTERM is turned into KeyboardInterrupt so an interrupted readiness wait
    still records the container as created with unknown readiness.

    Args:
        operation: Callable receiving the orchestrator and returning an exit code.
        settings: Resolved settings; loaded from the environment when None.
        runtime: Runtime adapter override, mainly for tests.
        confirm: Confirmation callback for full-runtime cleanup.
        sweep_on_exit: Run the exit reconciliation sweep afterwards.

    Returns:
        Process exit code.
    """
    settings = settings or Settings.load()
    settings.ensure_directories()
    add_file_handler(logger, settings.log_file)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGTERM, signal_handler)
    orchestrator: Optional[LifecycleOrchestrator] = None
    try:
        orchestrator = build_orchestrator(settings, runtime=runtime, confirm=confirm)
        return operation(orchestrator)
    except StateCorruption as e:
        logger.error(str(e))
        orchestrator = None
        return EXIT_STATE_CORRUPTION
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    finally:
        signal.signal(signal.SIGTERM, previous)
        if orchestrator is not None and sweep_on_exit:
            try:
                exit_sweep(orchestrator)
            except StateCorruption as e:
                logger.error(str(e))


__all__ = [
    "EXIT_FAILURE",
    "EXIT_OK",
    "EXIT_STATE_CORRUPTION",
    "EXIT_USAGE",
    "build_orchestrator",
    "build_store",
    "exit_sweep",
    "run",
]
