"""
Canonical description of one named container's desired configuration.

A WorkloadDescriptor is produced by a Spec Loader (or built directly by a
caller), validated once, and then consumed read-only by the orchestrator.
It is never patched in place: a changed spec produces a new descriptor.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from docker_ops_manager.errors import ValidationError

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9._-]*$")
MAX_NAME_LENGTH = 128

_PORT_RE = re.compile(
    r"^(?:(?P<ip>\d{1,3}(?:\.\d{1,3}){3}):)?(?:(?P<host>\d+):)?(?P<container>\d+)(?:/(?P<proto>tcp|udp|sctp))?$"
)


def validate_container_name(name: str) -> str:
    """Return ``name`` if it is a valid container name, else raise ValidationError."""
    if not name or len(name) > MAX_NAME_LENGTH or not NAME_PATTERN.match(name):
        raise ValidationError(
            "invalid container name (letters, digits, '.', '_' and '-' only, "
            f"must not start with '.' or '-', max {MAX_NAME_LENGTH} chars)",
            target=name or "<empty>",
            operation="validate",
        )
    return name


class PortMapping(BaseModel):
    model_config = ConfigDict(frozen=True)

    container: int = Field(ge=1, le=65535)
    host: Optional[int] = Field(default=None, ge=0, le=65535)
    protocol: Literal["tcp", "udp", "sctp"] = "tcp"
    host_ip: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.container}/{self.protocol}"

    @classmethod
    def parse(cls, value: Union[str, int, Mapping[str, Any], "PortMapping"]) -> "PortMapping":
        """Accept ``"8080:80"``, ``"127.0.0.1:8080:80/udp"``, ``80`` or a mapping."""
        if isinstance(value, PortMapping):
            return value
        if isinstance(value, int):
            return cls(container=value)
        if isinstance(value, Mapping):
            return cls(**value)
        match = _PORT_RE.match(str(value).strip())
        if not match:
            raise ValueError(f"invalid port mapping: {value!r}")
        host = match.group("host")
        return cls(
            container=int(match.group("container")),
            host=int(host) if host else None,
            protocol=match.group("proto") or "tcp",
            host_ip=match.group("ip"),
        )


class VolumeMount(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    mode: Literal["rw", "ro"] = "rw"

    @classmethod
    def parse(cls, value: Union[str, Mapping[str, Any], "VolumeMount"]) -> "VolumeMount":
        """Accept ``"src:/dst"``, ``"src:/dst:ro"`` or a mapping."""
        if isinstance(value, VolumeMount):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        parts = str(value).split(":")
        if len(parts) == 2:
            return cls(source=parts[0], target=parts[1])
        if len(parts) == 3:
            return cls(source=parts[0], target=parts[1], mode=parts[2])
        raise ValueError(f"invalid volume mount: {value!r}")


class HealthCheckSpec(BaseModel):
    """Health check forwarded to the runtime. Durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    test: Tuple[str, ...]
    interval: Optional[float] = Field(default=None, gt=0)
    timeout: Optional[float] = Field(default=None, gt=0)
    retries: Optional[int] = Field(default=None, ge=0)
    start_period: Optional[float] = Field(default=None, ge=0)

    @field_validator("test", mode="before")
    @classmethod
    def _normalize_test(cls, value: Any) -> Any:
        if isinstance(value, str):
            return ("CMD-SHELL", value)
        return value

    def to_docker(self) -> Dict[str, Any]:
        """Healthcheck dict in the shape the Docker API expects (nanoseconds)."""
        out: Dict[str, Any] = {"test": list(self.test)}
        for attr, key in (("interval", "interval"), ("timeout", "timeout"), ("start_period", "start_period")):
            seconds = getattr(self, attr)
            if seconds is not None:
                out[key] = int(seconds * 1_000_000_000)
        if self.retries is not None:
            out["retries"] = self.retries
        return out


class BuildSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    context: str
    dockerfile: Optional[str] = None
    tag: Optional[str] = None


class WorkloadDescriptor(BaseModel):
    """Validated desired configuration of one named container."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    source: Optional[str] = None
    image: Optional[str] = None
    build: Optional[BuildSpec] = None
    ports: Tuple[PortMapping, ...] = ()
    volumes: Tuple[VolumeMount, ...] = ()
    env: Dict[str, str] = Field(default_factory=dict)
    network: Optional[str] = None
    healthcheck: Optional[HealthCheckSpec] = None
    readiness_timeout: Optional[float] = Field(default=None, gt=0)
    restart_policy: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    command: Optional[Union[str, Tuple[str, ...]]] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value or len(value) > MAX_NAME_LENGTH or not NAME_PATTERN.match(value):
            raise ValueError(f"invalid container name: {value!r}")
        return value

    @field_validator("ports", mode="before")
    @classmethod
    def _parse_ports(cls, value: Any) -> Any:
        return tuple(PortMapping.parse(v) for v in (value or ()))

    @field_validator("volumes", mode="before")
    @classmethod
    def _parse_volumes(cls, value: Any) -> Any:
        return tuple(VolumeMount.parse(v) for v in (value or ()))

    @field_validator("env", "labels", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _image_or_build(self) -> "WorkloadDescriptor":
        if not self.image and self.build is None:
            raise ValueError("either 'image' or 'build' is required")
        return self

    @property
    def has_healthcheck(self) -> bool:
        return self.healthcheck is not None

    @property
    def image_ref(self) -> str:
        """Image the container runs: explicit image, else the build tag."""
        if self.image:
            return self.image
        if self.build is not None and self.build.tag:
            return self.build.tag
        return f"{self.name}:latest"


def descriptor_from_dict(data: Mapping[str, Any]) -> WorkloadDescriptor:
    """
    Build a WorkloadDescriptor, translating pydantic errors into ValidationError.

    Args:
        data: Field values as produced by a Spec Loader.

    Returns:
        The validated descriptor.
    """
    try:
        return WorkloadDescriptor(**data)
    except PydanticValidationError as e:
        raise ValidationError(
            _summarize(e),
            target=str(data.get("name") or "<unnamed>"),
            operation="validate",
            cause=e,
        ) from e


def _summarize(error: PydanticValidationError) -> str:
    lines: List[str] = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "descriptor"
        lines.append(f"{loc}: {item.get('msg')}")
    return "; ".join(lines)


__all__ = [
    "BuildSpec",
    "HealthCheckSpec",
    "PortMapping",
    "VolumeMount",
    "WorkloadDescriptor",
    "descriptor_from_dict",
    "validate_container_name",
]
