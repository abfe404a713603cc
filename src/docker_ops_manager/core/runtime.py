from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

import docker
import requests
from docker.errors import APIError, BuildError, DockerException, ImageNotFound
from docker.errors import NotFound as DockerNotFound
from docker.models.containers import Container

from docker_ops_manager.core.descriptor import WorkloadDescriptor
from docker_ops_manager.errors import DefinitiveRuntimeError, NotFound, TransientRuntimeError
from docker_ops_manager.utils.logger import logger

T = TypeVar("T")

MANAGED_LABEL = "managed-by"
MANAGED_VALUE = "docker-ops-manager"
SOURCE_LABEL = "docker-ops.source"


class HealthStatus(str, Enum):
    NONE = "none"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RuntimeAdapter(Protocol):
    """
    Capability interface over the container runtime.

    Every method may raise TransientRuntimeError (retryable) or
    DefinitiveRuntimeError / NotFound (not retryable).
    """

    def exists(self, name: str) -> bool: ...

    def create(self, descriptor: WorkloadDescriptor, start: bool) -> str: ...

    def start(self, name: str) -> None: ...

    def stop(self, name: str, timeout: int) -> None: ...

    def remove(self, name: str, force: bool) -> None: ...

    def inspect_health(self, name: str) -> HealthStatus: ...

    def inspect_running(self, name: str) -> bool: ...

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[str]: ...

    def list_managed(self) -> List[str]: ...

    def logs(self, name: str, tail: Optional[int] = None, timestamps: bool = False) -> str: ...


def _is_in_progress_conflict(error: APIError) -> bool:
    explanation = str(getattr(error, "explanation", "") or error).lower()
    return error.status_code == 409 and "in progress" in explanation


def translate_error(error: Exception, name: Optional[str], operation: str) -> Exception:
    """Map a Docker SDK / transport exception onto the adapter's error kinds."""
    if isinstance(error, (ImageNotFound, BuildError)):
        return DefinitiveRuntimeError(str(error), target=name, operation=operation, cause=error)
    if isinstance(error, DockerNotFound):
        return NotFound("no such container", target=name, operation=operation, cause=error)
    if isinstance(error, APIError):
        if error.is_server_error() or _is_in_progress_conflict(error):
            return TransientRuntimeError("daemon error", target=name, operation=operation, cause=error)
        return DefinitiveRuntimeError("rejected by daemon", target=name, operation=operation, cause=error)
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout, DockerException)):
        return TransientRuntimeError("daemon unavailable", target=name, operation=operation, cause=error)
    return error


class DockerRuntimeAdapter:
    """RuntimeAdapter backed by the Docker SDK."""

    def __init__(
        self,
        client: Optional[docker.DockerClient] = None,
        *,
        connect_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        logger.debug("Initializing DockerRuntimeAdapter")
        self._sleep = sleep
        self._connect_retries = connect_retries
        self.client = client
        if self.client is None:
            self._init_docker_client(connect_retries)

    def _init_docker_client(self, max_retries: int = 3) -> None:
        """Initialize Docker client with retry logic"""
        for attempt in range(max_retries):
            try:
                self.client = docker.from_env()
                self.client.ping()
                logger.debug("Docker client initialized successfully")
                return
            except DockerException as e:
                logger.warning(f"Docker client initialization attempt {attempt + 1}/{max_retries} failed: {e}")
                if attempt < max_retries - 1:
                    self._sleep(2 ** attempt)
                else:
                    logger.error(f"Failed to initialize Docker client after {max_retries} attempts: {e}")
                    raise TransientRuntimeError(
                        "cannot connect to Docker daemon", operation="connect", cause=e
                    ) from e

    def _call(self, operation: str, name: Optional[str], fn: Callable[[], T]) -> T:
        try:
            return fn()
        except Exception as e:
            translated = translate_error(e, name, operation)
            if translated is e:
                raise
            raise translated from e

    def _get(self, name: str, operation: str) -> Container:
        return self._call(operation, name, lambda: self.client.containers.get(name))

    # ---------- helpers ----------
    @staticmethod
    def _port_bindings(descriptor: WorkloadDescriptor) -> Optional[Dict[str, Any]]:
        if not descriptor.ports:
            return None
        bindings: Dict[str, Any] = {}
        for port in descriptor.ports:
            host = None if port.host == 0 else port.host
            bindings[port.key] = (port.host_ip, host) if port.host_ip else host
        return bindings

    @staticmethod
    def _volume_bindings(descriptor: WorkloadDescriptor) -> Optional[Dict[str, Dict[str, str]]]:
        if not descriptor.volumes:
            return None
        return {v.source: {"bind": v.target, "mode": v.mode} for v in descriptor.volumes}

    def _ensure_image(self, descriptor: WorkloadDescriptor) -> str:
        image = descriptor.image_ref
        if descriptor.build is not None and not descriptor.image:
            logger.info(f"Building image {image} from {descriptor.build.context}")
            self._call("build", descriptor.name, lambda: self.client.images.build(
                path=descriptor.build.context,
                dockerfile=descriptor.build.dockerfile,
                tag=image,
                rm=True,
            ))
            return image
        try:
            self.client.images.get(image)
            logger.debug(f"Image {image} already exists locally")
        except ImageNotFound:
            logger.info(f"Pulling image {image}...")
            self._call("pull", descriptor.name, lambda: self.client.images.pull(image))
            logger.info(f"Successfully pulled image {image}")
        except (APIError, requests.exceptions.RequestException) as e:
            raise translate_error(e, descriptor.name, "pull") from e
        return image

    # -------- RuntimeAdapter --------

    def exists(self, name: str) -> bool:
        try:
            self._get(name, "exists")
        except NotFound:
            return False
        return True

    def create(self, descriptor: WorkloadDescriptor, start: bool) -> str:
        image = self._ensure_image(descriptor)
        labels = {MANAGED_LABEL: MANAGED_VALUE, **descriptor.labels}
        if descriptor.source:
            labels[SOURCE_LABEL] = descriptor.source
        kwargs: Dict[str, Any] = {
            "image": image,
            "name": descriptor.name,
            "detach": True,
            "environment": descriptor.env or None,
            "ports": self._port_bindings(descriptor),
            "volumes": self._volume_bindings(descriptor),
            "labels": labels,
            "network": descriptor.network,
            "command": list(descriptor.command) if isinstance(descriptor.command, tuple) else descriptor.command,
        }
        if descriptor.healthcheck is not None:
            kwargs["healthcheck"] = descriptor.healthcheck.to_docker()
        if descriptor.restart_policy and descriptor.restart_policy != "no":
            kwargs["restart_policy"] = {"Name": descriptor.restart_policy}
        kwargs = {k: v for k, v in kwargs.items() if v is not None}

        logger.debug(f"Container config for {descriptor.name}: {kwargs}")
        if start:
            container = self._call("create", descriptor.name, lambda: self.client.containers.run(**kwargs))
        else:
            kwargs.pop("detach")
            container = self._call("create", descriptor.name, lambda: self.client.containers.create(**kwargs))
        logger.info(f"Container created: {container.id} ({descriptor.name})")
        return container.id

    def start(self, name: str) -> None:
        container = self._get(name, "start")
        self._call("start", name, container.start)

    def stop(self, name: str, timeout: int) -> None:
        container = self._get(name, "stop")
        self._call("stop", name, lambda: container.stop(timeout=timeout))

    def remove(self, name: str, force: bool) -> None:
        container = self._get(name, "remove")
        self._call("remove", name, lambda: container.remove(force=force))

    def inspect_health(self, name: str) -> HealthStatus:
        container = self._get(name, "inspect")
        state = (container.attrs or {}).get("State", {}) or {}
        status = (state.get("Health") or {}).get("Status")
        try:
            return HealthStatus(status) if status else HealthStatus.NONE
        except ValueError:
            logger.debug(f"Unknown health status for {name}: {status}")
            return HealthStatus.NONE

    def inspect_running(self, name: str) -> bool:
        container = self._get(name, "inspect")
        return container.status == "running"

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[str]:
        items = self._call("list", None, lambda: self.client.containers.list(all=True, filters=filters or None))
        return [c.name for c in items]

    def list_managed(self) -> List[str]:
        return self.list({"label": f"{MANAGED_LABEL}={MANAGED_VALUE}"})

    def logs(self, name: str, tail: Optional[int] = None, timestamps: bool = False) -> str:
        container = self._get(name, "logs")
        raw = self._call("logs", name, lambda: container.logs(
            tail="all" if tail is None else tail,
            timestamps=timestamps,
        ))
        return raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)


__all__ = [
    "DockerRuntimeAdapter",
    "HealthStatus",
    "MANAGED_LABEL",
    "MANAGED_VALUE",
    "RuntimeAdapter",
    "translate_error",
]
