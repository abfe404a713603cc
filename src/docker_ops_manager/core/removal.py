"""
Bounded retry and the Retry-and-Verify removal protocol.

Every runtime call the orchestrator makes goes through ``call_with_retry``,
which retries only TransientRuntimeError. Container removal additionally goes
through ``remove_and_verify``: the removal call's own status is never trusted,
every entity is re-checked with ``exists`` and only reported removed once the
runtime no longer knows it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, TypeVar

from docker_ops_manager.core.runtime import RuntimeAdapter
from docker_ops_manager.errors import (
    DefinitiveRuntimeError,
    NotFound,
    PartialFailure,
    RuntimeAdapterError,
    TransientRuntimeError,
)
from docker_ops_manager.utils.logger import logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff: float = 1.0


@dataclass
class RemovalReport:
    removed: List[str] = field(default_factory=list)
    remaining: List[str] = field(default_factory=list)
    reasons: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.remaining


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "runtime call",
) -> T:
    """Call ``fn``, retrying TransientRuntimeError up to ``policy.attempts`` times."""
    for attempt in range(1, policy.attempts + 1):
        try:
            return fn()
        except TransientRuntimeError as e:
            if attempt >= policy.attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            logger.warning(f"{description} attempt {attempt}/{policy.attempts} failed: {e}; retrying")
            sleep(policy.backoff)
    raise AssertionError("unreachable")  # pragma: no cover


def _remove_one(
    runtime: RuntimeAdapter,
    name: str,
    *,
    force: bool,
    stop_timeout: int,
    policy: RetryPolicy,
    sleep: Callable[[float], None],
) -> Optional[str]:
    """Returns None once ``name`` is verified absent, else the last failure reason."""
    reason: Optional[str] = None
    for attempt in range(1, policy.attempts + 1):
        try:
            if not force and runtime.inspect_running(name):
                logger.info(f"Stopping running container {name} before removal")
                runtime.stop(name, stop_timeout)
            runtime.remove(name, force)
        except NotFound:
            logger.debug(f"Container {name} already gone on attempt {attempt}")
        except TransientRuntimeError as e:
            reason = str(e)
            logger.warning(f"Removal attempt {attempt}/{policy.attempts} for {name} failed: {e}")
        except DefinitiveRuntimeError as e:
            reason = str(e)
            logger.error(f"Removal of {name} rejected: {e}")
            break

        try:
            still_present = runtime.exists(name)
        except RuntimeAdapterError as e:
            reason = f"existence check failed: {e}"
            still_present = True

        if not still_present:
            logger.info(f"Container {name} removed (verified on attempt {attempt})")
            return None

        if reason is None:
            reason = "still present after removal"
        logger.warning(f"Container {name} still exists after removal attempt {attempt}/{policy.attempts}")
        if attempt < policy.attempts:
            sleep(policy.backoff)

    # the verdict always rests on a fresh existence check
    try:
        if not runtime.exists(name):
            return None
    except RuntimeAdapterError as e:
        reason = f"existence check failed: {e}"
    return reason or "still present after removal"


def remove_and_verify(
    runtime: RuntimeAdapter,
    names: Iterable[str],
    *,
    force: bool = False,
    stop_timeout: int = 30,
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], None] = time.sleep,
) -> RemovalReport:
    """
    Remove every named container and verify each one is gone.

    Args:
        runtime: Adapter to issue removals and existence checks against.
        names: Containers to remove, processed in order.
        force: Force-remove running containers instead of stopping them first.
        stop_timeout: Grace period passed to stop when not forcing.
        policy: Attempt bound and backoff between attempts.
        sleep: Injectable sleep used for the backoff.

    Returns:
        RemovalReport with every name listed as removed.

    Raises:
        PartialFailure: If any entity is still present after the attempts are exhausted.
    """
    report = RemovalReport()
    for name in names:
        reason = _remove_one(runtime, name, force=force, stop_timeout=stop_timeout, policy=policy, sleep=sleep)
        if reason is None:
            report.removed.append(name)
        else:
            report.remaining.append(name)
            report.reasons[name] = reason

    if report.remaining:
        raise PartialFailure(
            f"still present after {policy.attempts} attempts: {', '.join(report.remaining)}",
            remaining=report.remaining,
            removed=report.removed,
            target=report.remaining[0] if len(report.remaining) == 1 else None,
            operation="remove",
        )
    return report


__all__ = ["RemovalReport", "RetryPolicy", "call_with_retry", "remove_and_verify"]
