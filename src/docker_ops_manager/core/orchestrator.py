"""
Lifecycle orchestration for tracked containers.

The orchestrator sequences RuntimeAdapter calls, readiness waits and
StateStore updates for every user-facing operation. It holds no ambient
state: each call receives its target and flags explicitly, and multi-target
work arrives as an OperationRequest dispatched through the BatchExecutor.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from docker_ops_manager.config import Settings
from docker_ops_manager.core.batch import BatchExecutor, BatchResult
from docker_ops_manager.core.descriptor import WorkloadDescriptor, validate_container_name
from docker_ops_manager.core.removal import RetryPolicy, call_with_retry, remove_and_verify
from docker_ops_manager.core.runtime import RuntimeAdapter
from docker_ops_manager.errors import (
    AlreadyExists,
    DockerOpsError,
    NotFound,
    NotPreviouslyGenerated,
    PartialFailure,
    ReadinessTimeout,
    ReadinessUnhealthy,
    RuntimeAdapterError,
    ValidationError,
)
from docker_ops_manager.loader import ComposeSpecLoader
from docker_ops_manager.monitoring.readiness import ReadinessMonitor, WatchState
from docker_ops_manager.monitoring.reconciler import ReconciliationSweeper
from docker_ops_manager.storage.state_store import Readiness, StateStore, Status, TrackedRecord
from docker_ops_manager.utils.logger import logger

ConfirmCallback = Callable[[List[str]], bool]


class OperationKind(str, Enum):
    GENERATE = "generate"
    INSTALL = "install"
    REINSTALL = "reinstall"
    UPDATE = "update"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    CLEANUP = "cleanup"
    STATUS = "status"


class CleanupScope(str, Enum):
    SINGLE = "single"
    LIST = "list"
    STATE = "state"
    RUNTIME = "runtime"


@dataclass(frozen=True)
class CleanupTarget:
    scope: CleanupScope
    names: Tuple[str, ...] = ()

    @classmethod
    def single(cls, name: str) -> "CleanupTarget":
        return cls(CleanupScope.SINGLE, (name,))

    @classmethod
    def many(cls, names: Sequence[str]) -> "CleanupTarget":
        return cls(CleanupScope.LIST, tuple(names))

    @classmethod
    def state_managed(cls) -> "CleanupTarget":
        return cls(CleanupScope.STATE)

    @classmethod
    def full_runtime(cls) -> "CleanupTarget":
        return cls(CleanupScope.RUNTIME)

    def __post_init__(self) -> None:
        if self.scope in (CleanupScope.SINGLE, CleanupScope.LIST) and not self.names:
            raise ValidationError("cleanup needs at least one container name", operation="cleanup")
        if self.scope is CleanupScope.SINGLE and len(self.names) != 1:
            raise ValidationError("single cleanup takes exactly one name", operation="cleanup")


@dataclass(frozen=True)
class OperationRequest:
    """
    Normalized request produced by an Invoker.

    A generate request carries either ready ``descriptors`` or a spec file in
    ``source``; with a source, each target (default: every workload in the
    file) is loaded and validated on its own, so one malformed workload
    fails only itself.
    """

    kind: OperationKind
    targets: Tuple[str, ...] = ()
    descriptors: Tuple[WorkloadDescriptor, ...] = ()
    source: Optional[str] = None
    force: bool = False
    no_start: bool = False
    timeout: Optional[float] = None
    all_state: bool = False
    all_runtime: bool = False

    def __post_init__(self) -> None:
        try:
            kind = OperationKind(self.kind)
        except ValueError as e:
            raise ValidationError(f"unknown operation '{self.kind}'", operation="request", cause=e) from e
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "targets", tuple(self.targets))
        object.__setattr__(self, "descriptors", tuple(self.descriptors))
        if self.source is not None:
            object.__setattr__(self, "source", str(self.source))

        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError("timeout must be positive", operation=kind.value)
        if (self.all_state or self.all_runtime) and kind is not OperationKind.CLEANUP:
            raise ValidationError("--all and --all-runtime only apply to cleanup", operation=kind.value)
        if self.all_state and self.all_runtime:
            raise ValidationError("choose either all tracked or all runtime containers", operation=kind.value)
        if self.source is not None and kind is not OperationKind.GENERATE:
            raise ValidationError("a spec file only applies to generate", operation=kind.value)
        if kind is OperationKind.GENERATE:
            if self.descriptors and self.source is not None:
                raise ValidationError("give either workloads or a spec file, not both", operation=kind.value)
            if not self.descriptors and self.source is None:
                raise ValidationError("generate needs at least one workload", operation=kind.value)
        elif kind is OperationKind.CLEANUP:
            if not (self.targets or self.all_state or self.all_runtime):
                raise ValidationError("cleanup needs names, --all or --all-runtime", operation=kind.value)
        elif kind is not OperationKind.STATUS and not self.targets:
            raise ValidationError(f"{kind.value} needs at least one container name", operation=kind.value)

    @property
    def names(self) -> List[str]:
        if self.kind is OperationKind.GENERATE and self.descriptors:
            return [d.name for d in self.descriptors]
        return list(self.targets)


@dataclass
class OperationOutcome:
    name: str
    operation: str
    status: Optional[Status] = None
    readiness: Optional[Readiness] = None
    runtime_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


class LifecycleOrchestrator:
    """Runs lifecycle operations against the runtime and keeps the state store in step."""

    def __init__(
        self,
        runtime: RuntimeAdapter,
        store: StateStore,
        *,
        settings: Optional[Settings] = None,
        monitor: Optional[ReadinessMonitor] = None,
        sweeper: Optional[ReconciliationSweeper] = None,
        loader: Optional[ComposeSpecLoader] = None,
        batch: Optional[BatchExecutor] = None,
        confirm: Optional[ConfirmCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runtime = runtime
        self.store = store
        self.settings = settings or Settings()
        self._sleep = sleep
        self.monitor = monitor or ReadinessMonitor(
            runtime,
            poll_interval=self.settings.poll_interval,
            configured_timeout=self.settings.readiness_timeout,
            sleep=sleep,
        )
        self.sweeper = sweeper or ReconciliationSweeper(runtime, store)
        self.loader = loader or ComposeSpecLoader()
        self.batch = batch or BatchExecutor(max_workers=self.settings.max_workers)
        self.confirm = confirm
        self.policy = RetryPolicy(attempts=self.settings.removal_attempts, backoff=self.settings.removal_backoff)

    # ---------- helpers ----------
    def _retry(self, operation: str, name: Optional[str], fn: Callable[[], Any]) -> Any:
        return call_with_retry(fn, policy=self.policy, sleep=self._sleep, description=f"{operation} {name or ''}".strip())

    def _exists(self, name: str) -> bool:
        return self._retry("exists", name, lambda: self.runtime.exists(name))

    def _is_running(self, name: str) -> bool:
        return self._retry("inspect", name, lambda: self.runtime.inspect_running(name))

    def _require_existing(self, name: str, operation: str) -> None:
        if not self._exists(name):
            raise NotFound("container does not exist", target=name, operation=operation)

    def _commit(
        self,
        record: TrackedRecord,
        operation: str,
        status: Status,
        readiness: Optional[Readiness] = None,
        detail: Optional[str] = None,
    ) -> None:
        with self.store.transaction():
            record.record(
                operation,
                status,
                max_history=self.settings.max_operation_history,
                readiness=readiness,
                detail=detail,
            )
            self.store.put(record)

    def _persist_pending(self, record: TrackedRecord) -> None:
        """Store the best-known state before a readiness wait begins."""
        with self.store.transaction():
            record.status = Status.CREATED
            record.readiness = Readiness.UNKNOWN
            self.store.put(record)

    def _descriptor_for(self, record: Optional[TrackedRecord]) -> Optional[WorkloadDescriptor]:
        """Best-effort reload of a record's descriptor, for its timeout override."""
        if record is None or not record.source:
            return None
        try:
            return self.loader.load(record.source, record.name)
        except DockerOpsError as e:
            logger.debug(f"Could not reload spec for {record.name} from {record.source}: {e}")
            return None

    def _await_readiness(
        self,
        record: TrackedRecord,
        operation: str,
        descriptor: Optional[WorkloadDescriptor],
        timeout: Optional[float],
        outcome: OperationOutcome,
    ) -> None:
        self._persist_pending(record)
        try:
            result = self.monitor.wait(record.name, descriptor, timeout)
        except KeyboardInterrupt:
            logger.warning(f"Interrupted while waiting for {record.name}; recorded as created, readiness unknown")
            self._commit(record, operation, Status.CREATED, Readiness.UNKNOWN, "interrupted during readiness wait")
            raise
        except NotFound:
            logger.warning(f"Container {record.name} disappeared while waiting for readiness; dropping its record")
            self._forget([record.name])
            raise

        if result.state is WatchState.READY:
            self._commit(record, operation, Status.RUNNING, Readiness.READY)
        elif result.state is WatchState.UNHEALTHY:
            self._commit(record, operation, Status.RUNNING, Readiness.UNHEALTHY, "health check reported unhealthy")
            raise ReadinessUnhealthy(
                f"health check reported unhealthy after {result.elapsed:.1f}s",
                target=record.name,
                operation=operation,
            )
        else:
            warning = ReadinessTimeout(
                f"not ready within {result.timeout:g}s; left as created, readiness unknown",
                target=record.name,
                operation=operation,
            )
            self._commit(record, operation, Status.CREATED, Readiness.UNKNOWN, warning.message)
            outcome.warnings.append(str(warning))
        outcome.status = record.status
        outcome.readiness = record.readiness

    # ---------- operations ----------
    def generate(
        self,
        descriptor: WorkloadDescriptor,
        start: bool = True,
        force: bool = False,
        timeout: Optional[float] = None,
    ) -> OperationOutcome:
        """
        Create the container described by ``descriptor`` and track it.

        Args:
            descriptor: Validated workload.
            start: Start the container and wait for readiness.
            force: Remove an existing container of the same name first.
            timeout: Invoker readiness timeout for this call.

        Returns:
            OperationOutcome with the recorded status, readiness and warnings.

        Raises:
            AlreadyExists: If the container exists and ``force`` is false.
            PartialFailure: If the existing container could not be removed.
            ReadinessUnhealthy: If the new container reports unhealthy.
        """
        return self._generate(descriptor, start=start, force=force, timeout=timeout, operation="generate")

    def _generate(
        self,
        descriptor: WorkloadDescriptor,
        *,
        start: bool,
        force: bool,
        timeout: Optional[float],
        operation: str,
    ) -> OperationOutcome:
        name = descriptor.name
        outcome = OperationOutcome(name=name, operation=operation)

        if self._exists(name):
            if not force:
                raise AlreadyExists("container already exists (use --force to replace it)", target=name, operation=operation)
            logger.info(f"Force mode: removing existing container {name}")
            report = remove_and_verify(
                self.runtime,
                [name],
                force=True,
                stop_timeout=self.settings.stop_timeout,
                policy=self.policy,
                sleep=self._sleep,
            )
            outcome.removed.extend(report.removed)
        elif self.store.get(name) is not None:
            logger.info(f"Replacing stale record for {name}; its container no longer exists")

        logger.info(f"Creating container {name} from {descriptor.source or descriptor.image_ref}")
        runtime_id = self._retry("create", name, lambda: self.runtime.create(descriptor, start))
        outcome.runtime_id = runtime_id

        record = self.store.get(name) or TrackedRecord(name=name)
        record.source = descriptor.source
        record.image = descriptor.image_ref
        record.runtime_id = runtime_id

        if not start:
            self._commit(record, operation, Status.CREATED, None, "created without starting")
            outcome.status = record.status
            return outcome

        self._await_readiness(record, operation, descriptor, timeout, outcome)
        logger.info(f"{operation} {name}: {outcome.status.value}, readiness {outcome.readiness.value}")
        return outcome

    def install(
        self,
        name: str,
        start: bool = True,
        force: bool = False,
        timeout: Optional[float] = None,
        operation: str = "install",
    ) -> OperationOutcome:
        """Recreate ``name`` from the spec file it was generated from."""
        validate_container_name(name)
        record = self.store.get(name)
        if record is None or not record.source:
            raise NotPreviouslyGenerated(
                "no tracked spec source; use 'generate' first", target=name, operation=operation
            )
        descriptor = self.loader.load(record.source, name)
        logger.info(f"Installing {name} from {record.source}")
        return self._generate(descriptor, start=start, force=force, timeout=timeout, operation=operation)

    def reinstall(self, name: str, timeout: Optional[float] = None) -> OperationOutcome:
        """Remove and recreate an existing container from its tracked spec."""
        validate_container_name(name)
        self._require_existing(name, "reinstall")
        return self.install(name, start=True, force=True, timeout=timeout, operation="reinstall")

    def update(self, name: str, timeout: Optional[float] = None) -> OperationOutcome:
        """Recreate ``name`` from its spec, keeping it running only if it was."""
        validate_container_name(name)
        self._require_existing(name, "update")
        was_running = self._is_running(name)
        return self.install(name, start=was_running, force=True, timeout=timeout, operation="update")

    def start(self, name: str, timeout: Optional[float] = None, operation: str = "start") -> OperationOutcome:
        validate_container_name(name)
        self._require_existing(name, operation)
        outcome = OperationOutcome(name=name, operation=operation)
        record = self.store.get(name)

        if self._is_running(name):
            logger.info(f"Container {name} is already running")
            if record is not None and record.status is not Status.RUNNING:
                self._commit(record, operation, Status.RUNNING, record.readiness, "already running")
            outcome.status = Status.RUNNING
            outcome.readiness = record.readiness if record is not None else None
            return outcome

        self._retry("start", name, lambda: self.runtime.start(name))
        logger.info(f"Container {name} started")
        if record is None:
            # untracked containers are started but never recorded
            result = self.monitor.wait(name, None, timeout)
            if result.state is WatchState.UNHEALTHY:
                raise ReadinessUnhealthy("health check reported unhealthy", target=name, operation=operation)
            outcome.status = Status.RUNNING if result.ready else Status.CREATED
            if result.state is WatchState.TIMED_OUT:
                outcome.warnings.append(
                    str(ReadinessTimeout(f"not ready within {result.timeout:g}s", target=name, operation=operation))
                )
            return outcome

        self._await_readiness(record, operation, self._descriptor_for(record), timeout, outcome)
        return outcome

    def stop(self, name: str, timeout: Optional[float] = None) -> OperationOutcome:
        validate_container_name(name)
        self._require_existing(name, "stop")
        grace = int(timeout) if timeout is not None else self.settings.stop_timeout
        if self._is_running(name):
            self._retry("stop", name, lambda: self.runtime.stop(name, grace))
            logger.info(f"Container {name} stopped")
        else:
            logger.info(f"Container {name} is not running")

        record = self.store.get(name)
        if record is not None:
            self._commit(record, "stop", Status.STOPPED)
        return OperationOutcome(name=name, operation="stop", status=Status.STOPPED)

    def restart(self, name: str, timeout: Optional[float] = None) -> OperationOutcome:
        """Stop then start ``name``; readiness is awaited again."""
        self.stop(name)
        return self.start(name, timeout, operation="restart")

    def cleanup(
        self,
        target: CleanupTarget,
        force: bool = False,
        confirm: Optional[ConfirmCallback] = None,
    ) -> OperationOutcome:
        """
        Remove containers and their records, verifying each removal.

        Args:
            target: Which containers to remove.
            force: Force-remove running containers; also skips confirmation.
            confirm: Approves a full-runtime cleanup given the names to remove.

        Raises:
            ValidationError: If a full-runtime cleanup is not confirmed.
            PartialFailure: If some containers are still present afterwards.
        """
        names = self._cleanup_names(target, force, confirm)
        label = names[0] if len(names) == 1 else f"{len(names)} containers"
        outcome = OperationOutcome(name=label, operation="cleanup")
        if not names:
            logger.info("Nothing to clean up")
            return outcome
        for name in names:
            validate_container_name(name)

        try:
            report = remove_and_verify(
                self.runtime,
                names,
                force=force,
                stop_timeout=self.settings.stop_timeout,
                policy=self.policy,
                sleep=self._sleep,
            )
            removed = report.removed
        except PartialFailure as e:
            removed = e.removed
            self._forget(removed)
            raise

        self._forget(removed)
        outcome.removed = list(removed)
        if target.scope in (CleanupScope.STATE, CleanupScope.RUNTIME):
            self.sweeper.sweep()
        return outcome

    def _cleanup_names(
        self, target: CleanupTarget, force: bool, confirm: Optional[ConfirmCallback]
    ) -> List[str]:
        if target.scope is CleanupScope.STATE:
            return self.store.names()
        if target.scope is CleanupScope.RUNTIME:
            names = self._retry("list", None, lambda: self.runtime.list(None))
            if not names:
                logger.info("The runtime reports no containers to remove")
                return []
            if not force:
                approve = confirm or self.confirm
                if approve is None or not approve(list(names)):
                    raise ValidationError(
                        "removing every runtime container needs confirmation (or --force)",
                        operation="cleanup",
                    )
            return list(names)
        return list(target.names)

    def _forget(self, names: Sequence[str]) -> None:
        if not names:
            return
        with self.store.transaction():
            for name in names:
                self.store.remove(name)

    def status(self, names: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Read-only view combining each record with the live runtime state."""
        rows = []
        for name in list(names) if names else self.store.names():
            record = self.store.get(name)
            row: Dict[str, Any] = {
                "name": name,
                "tracked": record is not None,
                "status": record.status.value if record else None,
                "readiness": record.readiness.value if record and record.readiness else None,
                "last_operation": record.last_operation if record else None,
                "source": record.source if record else None,
                "exists": None,
                "running": None,
                "health": None,
            }
            try:
                row["exists"] = self.runtime.exists(name)
                if row["exists"]:
                    row["running"] = self.runtime.inspect_running(name)
                    row["health"] = self.runtime.inspect_health(name).value
            except RuntimeAdapterError as e:
                logger.warning(f"Could not inspect {name}: {e}")
            rows.append(row)
        return rows

    def managed(self) -> List[Dict[str, Any]]:
        """Every container carrying this tool's management label, tracked or not."""
        rows = []
        for name in self._retry("list", None, self.runtime.list_managed):
            record = self.store.get(name)
            try:
                running: Optional[bool] = self.runtime.inspect_running(name)
            except (NotFound, RuntimeAdapterError) as e:
                logger.debug(f"Could not inspect {name}: {e}")
                running = None
            rows.append({
                "name": name,
                "tracked": record is not None,
                "running": running,
                "source": record.source if record else None,
            })
        return rows

    def logs(
        self,
        name: str,
        tail: Optional[int] = None,
        timestamps: bool = False,
        pattern: Optional[str] = None,
    ) -> List[str]:
        """
        Return a container's log lines.

        Args:
            name: Container, tracked or not.
            tail: Only the last ``tail`` lines; all lines when None.
            timestamps: Prefix each line with the runtime's timestamp.
            pattern: Keep only lines matching this case-insensitive regex.

        Raises:
            ValidationError: If ``tail`` is negative or ``pattern`` is not a valid regex.
            NotFound: If the container does not exist.
        """
        validate_container_name(name)
        if tail is not None and tail < 0:
            raise ValidationError("tail must not be negative", target=name, operation="logs")
        matcher = None
        if pattern:
            try:
                matcher = re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                raise ValidationError(f"invalid search pattern: {e}", target=name, operation="logs", cause=e) from e
        self._require_existing(name, "logs")
        text = self._retry("logs", name, lambda: self.runtime.logs(name, tail, timestamps))
        lines = text.splitlines()
        if matcher is not None:
            lines = [line for line in lines if matcher.search(line)]
            logger.info(f"{len(lines)} log line(s) of {name} match '{pattern}'")
        return lines

    # ---------- batch dispatch ----------
    def execute(self, request: OperationRequest) -> BatchResult:
        """
        Run ``request`` over all of its targets and report per-target outcomes.

        Bulk and destructive requests are followed by a reconciliation sweep.
        """
        kind = request.kind
        start = not request.no_start
        timeout = request.timeout

        if kind is OperationKind.GENERATE and request.source is not None:
            source = request.source
            targets = list(request.targets) or self.loader.workload_names(source)
            fn = lambda n: self.generate(  # noqa: E731
                self.loader.load(source, n), start=start, force=request.force, timeout=timeout
            )
        elif kind is OperationKind.GENERATE:
            by_name = {d.name: d for d in request.descriptors}
            targets = [d.name for d in request.descriptors]
            fn = lambda n: self.generate(by_name[n], start=start, force=request.force, timeout=timeout)  # noqa: E731
        elif kind is OperationKind.CLEANUP:
            if request.all_runtime:
                targets = self._cleanup_names(CleanupTarget.full_runtime(), request.force, None)
            elif request.all_state:
                targets = self.store.names()
            else:
                targets = list(request.targets)
            fn = lambda n: self.cleanup(CleanupTarget.single(n), force=request.force)  # noqa: E731
        elif kind is OperationKind.STATUS:
            targets = list(request.targets) or self.store.names()
            fn = lambda n: self.status([n])[0]  # noqa: E731
        else:
            fn = self._single_target(kind, request)
            targets = list(request.targets)

        result = self.batch.run(kind.value, targets, fn)
        if kind is OperationKind.CLEANUP or (kind is not OperationKind.STATUS and len(targets) > 1):
            self.sweeper.sweep()
        return result

    def _single_target(self, kind: OperationKind, request: OperationRequest) -> Callable[[str], Any]:
        start = not request.no_start
        timeout = request.timeout
        if kind is OperationKind.INSTALL:
            return lambda n: self.install(n, start=start, force=request.force, timeout=timeout)
        if kind is OperationKind.REINSTALL:
            return lambda n: self.reinstall(n, timeout=timeout)
        if kind is OperationKind.UPDATE:
            return lambda n: self.update(n, timeout=timeout)
        if kind is OperationKind.START:
            return lambda n: self.start(n, timeout=timeout)
        if kind is OperationKind.STOP:
            return lambda n: self.stop(n, timeout=timeout)
        if kind is OperationKind.RESTART:
            return lambda n: self.restart(n, timeout=timeout)
        raise ValidationError(f"unsupported operation '{kind.value}'", operation=kind.value)


__all__ = [
    "CleanupScope",
    "CleanupTarget",
    "LifecycleOrchestrator",
    "OperationKind",
    "OperationOutcome",
    "OperationRequest",
]
