from __future__ import annotations

from typing import List, Optional

from docker_ops_manager.core.runtime import RuntimeAdapter
from docker_ops_manager.errors import NotFound, RuntimeAdapterError
from docker_ops_manager.storage.state_store import GlobalState, StateStore, Status
from docker_ops_manager.utils.logger import logger


class ReconciliationSweeper:
    """
    Prunes tracked records whose containers no longer exist in the runtime.

    The sweeper never adds records and never removes a record because of a
    runtime error; only a successful ``exists() == False`` prunes.
    """

    def __init__(self, runtime: RuntimeAdapter, store: StateStore) -> None:
        self.runtime = runtime
        self.store = store

    def _vanished(self, name: str) -> bool:
        try:
            return not self.runtime.exists(name)
        except RuntimeAdapterError as e:
            logger.warning(f"Could not check {name} during reconciliation, keeping record: {e}")
            return False

    def sweep(self, state: Optional[GlobalState] = None) -> List[str]:
        """
        Remove records for containers the runtime no longer knows.

        Args:
            state: Already loaded state; defaults to the store's current state.

        Returns:
            Names of the pruned records, in record order.
        """
        with self.store.transaction_if_changed() as tx:
            state = tx.state if state is None else state
            pruned: List[str] = []
            for name, record in list(state.operations.items()):
                if not record.status.implies_existence:
                    continue
                if self._vanished(name):
                    logger.info(f"Container {name} no longer exists, removing from state")
                    self.store.remove(name)
                    pruned.append(name)
            tx.changed = bool(pruned)

        if pruned:
            logger.info(f"Reconciliation pruned {len(pruned)} record(s): {', '.join(pruned)}")
        else:
            logger.debug("Reconciliation found nothing to prune")
        return pruned

    def refresh(self, state: Optional[GlobalState] = None) -> List[str]:
        """
        Prune vanished containers, then update the status of the survivors.

        Returns:
            Names of the pruned records.
        """
        pruned = self.sweep(state)
        with self.store.transaction_if_changed() as tx:
            for name, record in list(tx.state.operations.items()):
                if not record.status.implies_existence:
                    continue
                try:
                    running = self.runtime.inspect_running(name)
                except NotFound:
                    continue
                except RuntimeAdapterError as e:
                    logger.debug(f"Status refresh for {name} skipped: {e}")
                    continue
                observed = Status.RUNNING if running else Status.STOPPED
                if record.status is Status.CREATED and not running:
                    # created-but-never-started stays created
                    continue
                if observed is not record.status:
                    logger.debug(f"Container {name} status {record.status.value} -> {observed.value}")
                    record.status = observed
                    tx.changed = True
        return pruned


__all__ = ["ReconciliationSweeper"]
