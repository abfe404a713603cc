from __future__ import annotations

import json
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from docker_ops_manager.errors import StateCorruption
from docker_ops_manager.utils.logger import logger


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class Status(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"

    @property
    def implies_existence(self) -> bool:
        return self in (Status.CREATED, Status.RUNNING, Status.STOPPED)


class Readiness(str, Enum):
    READY = "ready"
    UNKNOWN = "unknown"
    UNHEALTHY = "unhealthy"


class OperationEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    operation: str
    time: datetime
    status: Optional[Status] = None
    detail: Optional[str] = None


class TrackedRecord(BaseModel):
    """What the tool created for one container name, and what it last saw."""

    model_config = ConfigDict(extra="allow")

    name: str
    status: Status = Status.UNKNOWN
    readiness: Optional[Readiness] = None
    last_operation: Optional[str] = None
    last_operation_time: Optional[datetime] = None
    source: Optional[str] = None
    image: Optional[str] = None
    runtime_id: Optional[str] = None
    history: List[OperationEntry] = Field(default_factory=list)

    def record(
        self,
        operation: str,
        status: Status,
        *,
        max_history: int,
        readiness: Optional[Readiness] = None,
        detail: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> "TrackedRecord":
        """Apply a lifecycle transition and append it to the bounded history."""
        when = when or utcnow()
        self.status = status
        self.readiness = readiness
        self.last_operation = operation
        self.last_operation_time = when
        self.history.append(OperationEntry(operation=operation, time=when, status=status, detail=detail))
        if len(self.history) > max_history:
            del self.history[: len(self.history) - max_history]
        return self


class GlobalState(BaseModel):
    model_config = ConfigDict(extra="allow")

    last_container: str = ""
    last_operation: str = ""
    last_source: str = ""
    container_history: List[str] = Field(default_factory=list)
    operations: Dict[str, TrackedRecord] = Field(default_factory=dict)


class StateDocument(BaseModel):
    """On-disk layout: ``{"config": {...}, "state": {...}}``."""

    model_config = ConfigDict(extra="allow")

    config: Dict[str, Any] = Field(default_factory=dict)
    state: GlobalState = Field(default_factory=GlobalState)


class _Transaction:
    def __init__(self, state: GlobalState) -> None:
        self.state = state
        self.changed = False


class StateStore:
    """
    Durable map from container name to TrackedRecord.

    The whole document is read once, mutated in memory, and written back
    atomically (temp file + rename). A document that cannot be parsed raises
    StateCorruption; it is never reset implicitly.
    """

    def __init__(
        self,
        path: Path,
        *,
        max_container_history: int = 10,
        max_operation_history: int = 20,
        config_snapshot: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.path = Path(path)
        self.max_container_history = max_container_history
        self.max_operation_history = max_operation_history
        self._config_snapshot = dict(config_snapshot or {})
        self._lock = threading.RLock()
        self._document: Optional[StateDocument] = None

    # -------- document lifecycle --------
    def load(self) -> GlobalState:
        """Read the document from disk, or synthesize an empty one if missing."""
        with self._lock:
            if not self.path.exists():
                logger.debug(f"No state file at {self.path}, starting empty")
                self._document = StateDocument(config=dict(self._config_snapshot))
                return self._document.state
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                document = StateDocument.model_validate(raw)
            except (OSError, UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as e:
                logger.error(f"State file {self.path} is unreadable: {e}")
                raise StateCorruption(
                    f"state file {self.path} could not be parsed; "
                    "back it up and run 'state reset' to start over",
                    operation="load",
                    cause=e,
                ) from e
            for name, record in document.state.operations.items():
                if record.name != name:
                    raise StateCorruption(
                        f"record keyed '{name}' carries name '{record.name}'",
                        operation="load",
                    )
            self._document = document
            return document.state

    @property
    def state(self) -> GlobalState:
        with self._lock:
            if self._document is None:
                return self.load()
            return self._document.state

    def save(self) -> None:
        """Atomically persist the in-memory document (write temp, fsync, rename)."""
        with self._lock:
            document = self._document or StateDocument()
            if self._config_snapshot:
                document.config.update(self._config_snapshot)
            payload = json.dumps(document.model_dump(mode="json"), indent=2, ensure_ascii=False)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp", text=True)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
                raise
            self._document = document

    @contextmanager
    def transaction(self) -> Iterator[GlobalState]:
        """Hold the store lock around a mutate-then-save sequence."""
        with self._lock:
            state = self.state
            yield state
            self.save()

    @contextmanager
    def transaction_if_changed(self) -> Iterator["_Transaction"]:
        """Like ``transaction`` but only saves when the body sets ``changed``."""
        with self._lock:
            tx = _Transaction(self.state)
            yield tx
            if tx.changed:
                self.save()

    # -------- records --------
    def get(self, name: str) -> Optional[TrackedRecord]:
        return self.state.operations.get(name)

    def names(self) -> List[str]:
        return list(self.state.operations.keys())

    def put(self, record: TrackedRecord) -> None:
        """Upsert ``record`` and make it the most recent container."""
        with self._lock:
            state = self.state
            state.operations[record.name] = record
            if record.last_operation:
                state.last_operation = record.last_operation
            if record.source:
                state.last_source = record.source
            self.touch(record.name)

    def touch(self, name: str) -> None:
        """Move ``name`` to the front of the recency list and mark it last."""
        with self._lock:
            state = self.state
            state.last_container = name
            history = [n for n in state.container_history if n != name]
            history.insert(0, name)
            state.container_history = history[: self.max_container_history]

    def remove(self, name: str) -> Optional[TrackedRecord]:
        with self._lock:
            state = self.state
            record = state.operations.pop(name, None)
            state.container_history = [n for n in state.container_history if n != name]
            if state.last_container == name:
                state.last_container = ""
            if record is not None:
                logger.info(f"Removed {name} from state")
            return record

    # -------- maintenance --------
    def summary(self) -> Dict[str, Any]:
        state = self.state
        return {
            "state_file": str(self.path),
            "last_container": state.last_container,
            "last_operation": state.last_operation,
            "last_source": state.last_source,
            "container_history": list(state.container_history),
            "containers": {
                name: {
                    "status": record.status.value,
                    "readiness": record.readiness.value if record.readiness else None,
                    "last_operation": record.last_operation,
                    "last_operation_time": record.last_operation_time.isoformat()
                    if record.last_operation_time else None,
                    "source": record.source,
                }
                for name, record in state.operations.items()
            },
        }

    def backup(self) -> Path:
        """Copy the state file to a timestamped sibling and return its path."""
        with self._lock:
            if not self.path.exists():
                raise FileNotFoundError(f"no state file to back up at {self.path}")
            backup_path = self.path.with_name(f"{self.path.name}.backup.{utcnow().strftime('%Y%m%d_%H%M%S')}")
            shutil.copy2(self.path, backup_path)
            logger.info(f"State backed up to: {backup_path}")
            return backup_path

    def restore(self, backup_path: Path) -> GlobalState:
        """Replace the state file with ``backup_path`` after validating it."""
        with self._lock:
            candidate = StateStore(Path(backup_path))
            candidate.load()
            self._document = candidate._document
            self.save()
            logger.info(f"State restored from: {backup_path}")
            return self.state

    def clear(self) -> None:
        """Explicitly reset to an empty document. Only ever user-initiated."""
        with self._lock:
            self._document = StateDocument(config=dict(self._config_snapshot))
            self.save()
            logger.info("State file cleared")


__all__ = [
    "GlobalState",
    "OperationEntry",
    "Readiness",
    "StateDocument",
    "StateStore",
    "Status",
    "TrackedRecord",
    "utcnow",
]
