from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from docker_ops_manager.config import FALLBACK_READINESS_TIMEOUT
from docker_ops_manager.core.descriptor import WorkloadDescriptor
from docker_ops_manager.core.runtime import HealthStatus, RuntimeAdapter
from docker_ops_manager.errors import RuntimeAdapterError
from docker_ops_manager.utils.logger import logger

DEFAULT_POLL_INTERVAL = 1.0


class WatchState(str, Enum):
    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed_out"
    UNHEALTHY = "unhealthy"

    @property
    def terminal(self) -> bool:
        return self is not WatchState.WAITING


def resolve_timeout(
    descriptor_override: Optional[float],
    invoker_timeout: Optional[float],
    configured_default: Optional[float],
    fallback: float = FALLBACK_READINESS_TIMEOUT,
) -> float:
    """First positive value wins: descriptor, invoker, configured default, fallback."""
    for candidate in (descriptor_override, invoker_timeout, configured_default):
        if candidate is not None and candidate > 0:
            return float(candidate)
    return float(fallback)


@dataclass
class ReadinessResult:
    name: str
    state: WatchState
    timeout: float
    elapsed: float
    polls: int
    health_reported: bool = False
    last_health: Optional[HealthStatus] = None

    @property
    def ready(self) -> bool:
        return self.state is WatchState.READY


class ReadinessWatch:
    """
    State machine for one container: WAITING -> READY | TIMED_OUT | UNHEALTHY.

    ``declared`` says whether the workload declares a health check: True waits
    for ``healthy``, False waits for the container to run, and None (no
    descriptor to ask) follows whatever health the runtime reports.
    ``observe`` is fed one poll's observations; ``expire`` moves a still
    waiting watch to TIMED_OUT. Terminal states never change again.
    """

    def __init__(self, name: str, declared: Optional[bool] = None) -> None:
        self.name = name
        self.declared = declared
        self.state = WatchState.WAITING
        self.health_reported = False
        self.last_health: Optional[HealthStatus] = None

    def observe(self, health: Optional[HealthStatus], running: Optional[bool]) -> WatchState:
        if self.state.terminal:
            return self.state
        self.last_health = health
        if health in (HealthStatus.HEALTHY, HealthStatus.UNHEALTHY, HealthStatus.STARTING):
            self.health_reported = True
        if self.declared is False:
            if running:
                self.state = WatchState.READY
        elif health is HealthStatus.HEALTHY:
            self.state = WatchState.READY
        elif health is HealthStatus.UNHEALTHY:
            self.state = WatchState.UNHEALTHY
        elif health is None and self.declared is None and running:
            # no health check reported, or it could not be read
            self.state = WatchState.READY
        return self.state

    def expire(self) -> WatchState:
        if self.state is WatchState.WAITING:
            self.state = WatchState.TIMED_OUT
        return self.state


class ReadinessMonitor:
    """Polls the runtime until a container is usable, or the timeout passes."""

    def __init__(
        self,
        runtime: RuntimeAdapter,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        configured_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runtime = runtime
        self.poll_interval = poll_interval
        self.configured_timeout = configured_timeout
        self._clock = clock
        self._sleep = sleep

    def effective_timeout(self, descriptor: Optional[WorkloadDescriptor], invoker_timeout: Optional[float]) -> float:
        override = descriptor.readiness_timeout if descriptor is not None else None
        return resolve_timeout(override, invoker_timeout, self.configured_timeout)

    def _check_health(self, name: str) -> Optional[HealthStatus]:
        try:
            health = self.runtime.inspect_health(name)
        except RuntimeAdapterError as e:
            logger.debug(f"Health inspection for {name} failed: {e}")
            return None
        return None if health is HealthStatus.NONE else health

    def _check_running(self, name: str) -> bool:
        try:
            return self.runtime.inspect_running(name)
        except RuntimeAdapterError as e:
            logger.debug(f"Running check for {name} failed: {e}")
            return False

    def poll_once(self, watch: ReadinessWatch) -> WatchState:
        if watch.declared is False:
            health = None
            running: Optional[bool] = self._check_running(watch.name)
        else:
            health = self._check_health(watch.name)
            running = None if health is not None or watch.declared else self._check_running(watch.name)
        state = watch.observe(health, running)
        logger.debug(f"Readiness poll for {watch.name}: health={health}, running={running} -> {state.value}")
        return state

    def wait(
        self,
        name: str,
        descriptor: Optional[WorkloadDescriptor] = None,
        invoker_timeout: Optional[float] = None,
    ) -> ReadinessResult:
        """
        Block until the container is READY, UNHEALTHY, or the timeout elapses.

        Args:
            name: Container to watch.
            descriptor: Workload being watched. Its health-check declaration
                decides what READY means; without one the runtime's reported
                health is followed.
            invoker_timeout: Timeout supplied by the caller for this operation.

        Returns:
            ReadinessResult describing the terminal state reached.

        Raises:
            NotFound: If the container disappears during the wait.
        """
        timeout = self.effective_timeout(descriptor, invoker_timeout)
        declared = descriptor.has_healthcheck if descriptor is not None else None
        watch = ReadinessWatch(name, declared)
        started = self._clock()
        deadline = started + timeout
        polls = 0

        logger.info(f"Waiting for container '{name}' to be ready (timeout: {timeout:g}s)")
        while True:
            polls += 1
            state = self.poll_once(watch)
            if state.terminal:
                break
            now = self._clock()
            if now >= deadline:
                state = watch.expire()
                break
            self._sleep(min(self.poll_interval, deadline - now))

        elapsed = self._clock() - started
        result = ReadinessResult(
            name=name,
            state=state,
            timeout=timeout,
            elapsed=elapsed,
            polls=polls,
            health_reported=watch.health_reported,
            last_health=watch.last_health,
        )
        if state is WatchState.READY:
            if watch.health_reported:
                logger.info(f"Container '{name}' is healthy and ready ({elapsed:.1f}s)")
            else:
                logger.info(f"Container '{name}' is running; no health check to wait for ({elapsed:.1f}s)")
        elif state is WatchState.UNHEALTHY:
            logger.error(f"Container '{name}' reported unhealthy after {elapsed:.1f}s")
        else:
            logger.warning(f"Container '{name}' not ready within timeout ({timeout:g}s); readiness unknown")
        return result


__all__ = ["ReadinessMonitor", "ReadinessResult", "ReadinessWatch", "WatchState", "resolve_timeout"]
