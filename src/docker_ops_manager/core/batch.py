from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from docker_ops_manager.errors import DockerOpsError, PartialFailure, StateCorruption
from docker_ops_manager.utils.logger import logger


@dataclass
class TargetOutcome:
    target: str
    ok: bool
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    value: Any = None


@dataclass
class BatchResult:
    """Per-target outcomes of one batch operation, in supplied order."""

    operation: str
    outcomes: List[TargetOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> List[TargetOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def summary(self) -> str:
        return f"{self.operation}: {self.succeeded}/{self.total} succeeded, {self.failed} failed"

    def raise_for_failures(self) -> "BatchResult":
        if self.ok:
            return self
        names = ", ".join(o.target for o in self.failures)
        raise PartialFailure(
            f"{self.succeeded} of {self.total} succeeded; failed: {names}",
            remaining=[o.target for o in self.failures],
            removed=[o.target for o in self.outcomes if o.ok],
            result=self,
            operation=self.operation,
        )


class BatchExecutor:
    """
    Fan-out driver for multi-target operations.

    Each target is attempted even if earlier ones failed; a DockerOpsError
    becomes a failed outcome. StateCorruption aborts the whole batch.
    """

    def __init__(self, max_workers: int = 1) -> None:
        self.max_workers = max(1, max_workers)

    @staticmethod
    def _outcome(target: str, fn: Callable[[str], Any]) -> TargetOutcome:
        try:
            value = fn(target)
        except StateCorruption:
            raise
        except DockerOpsError as e:
            logger.error(f"{target}: {e}")
            return TargetOutcome(target=target, ok=False, reason=str(e), error_kind=e.kind)
        return TargetOutcome(
            target=target,
            ok=True,
            warnings=list(getattr(value, "warnings", None) or []),
            value=value,
        )

    def run(self, operation: str, targets: Sequence[str], fn: Callable[[str], Any]) -> BatchResult:
        """
        Apply ``fn`` to every target and aggregate the outcomes.

        Args:
            operation: Name used in log lines and the result.
            targets: Targets in the order they should be reported.
            fn: Operation applied per target; raises DockerOpsError on failure.

        Returns:
            BatchResult with one outcome per target, in supplied order.
        """
        result = BatchResult(operation=operation)
        targets = list(targets)
        if not targets:
            return result

        logger.info(f"Running {operation} on {len(targets)} target(s)")
        if self.max_workers == 1 or len(targets) == 1:
            for target in targets:
                result.outcomes.append(self._outcome(target, fn))
        else:
            workers = min(self.max_workers, len(targets))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="docker-ops") as executor:
                futures: List[Future] = [executor.submit(self._outcome, t, fn) for t in targets]
                try:
                    for future in futures:
                        result.outcomes.append(future.result())
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise

        if result.ok:
            logger.info(result.summary())
        else:
            logger.warning(result.summary())
        return result


__all__ = ["BatchExecutor", "BatchResult", "TargetOutcome"]
