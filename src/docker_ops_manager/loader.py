"""
Spec Loader: reads workload definition files into WorkloadDescriptors.

Two layouts are understood:

- docker-compose style files with a top-level ``services`` mapping. The
  service's ``container_name`` (or the service key) becomes the workload
  name; ``x-docker-ops.readiness_timeout`` sets the per-workload override.
- a custom single-workload file: a mapping with ``name`` or
  ``container_name`` and the same fields as a compose service.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from docker_ops_manager.core.descriptor import WorkloadDescriptor, descriptor_from_dict
from docker_ops_manager.errors import NotFound, ValidationError
from docker_ops_manager.utils.logger import logger

EXTENSION_KEY = "x-docker-ops"

_DURATION_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>h|ms|us|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001, "us": 0.000001}


def parse_duration(value: Union[str, int, float, None]) -> Optional[float]:
    """
    Parse a compose duration (``30s``, ``1m30s``, ``500ms``) or a bare number.

    Returns:
        Seconds as a float, or None when ``value`` is None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group("value")) * _UNIT_SECONDS[match.group("unit")]
        pos = match.end()
    if pos != len(text) or not text:
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _key_value_pairs(value: Any, field: str) -> Dict[str, Any]:
    """Accept both ``{"K": "v"}`` and ``["K=v", ...]`` forms."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, list):
        pairs: Dict[str, Any] = {}
        for item in value:
            key, sep, val = str(item).partition("=")
            pairs[key] = val if sep else ""
        return pairs
    raise ValueError(f"'{field}' must be a mapping or a list of KEY=VALUE strings")


def _healthcheck(value: Any) -> Optional[Dict[str, Any]]:
    if not value or not isinstance(value, Mapping):
        return None
    if value.get("disable"):
        return None
    test = value.get("test")
    if isinstance(test, list) and test and test[0] == "NONE":
        return None
    return {
        "test": test,
        "interval": parse_duration(value.get("interval")),
        "timeout": parse_duration(value.get("timeout")),
        "retries": value.get("retries"),
        "start_period": parse_duration(value.get("start_period")),
    }


def _build(value: Any, base_dir: Path, image: Optional[str]) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = {"context": value}
    if not isinstance(value, Mapping) or "context" not in value:
        raise ValueError("'build' must be a path or a mapping with 'context'")
    context = Path(str(value["context"]))
    if not context.is_absolute():
        context = base_dir / context
    return {"context": str(context), "dockerfile": value.get("dockerfile"), "tag": image}


def _network(service: Mapping[str, Any]) -> Optional[str]:
    if service.get("network_mode"):
        return str(service["network_mode"])
    networks = service.get("networks")
    if isinstance(networks, list) and networks:
        return str(networks[0])
    if isinstance(networks, Mapping) and networks:
        return str(next(iter(networks)))
    return None


def service_to_fields(key: str, service: Mapping[str, Any], source: Path) -> Dict[str, Any]:
    """Translate one compose service (or custom spec) into descriptor fields."""
    if not isinstance(service, Mapping):
        raise ValueError(f"service '{key}' must be a mapping")
    extension = service.get(EXTENSION_KEY) or {}
    if not isinstance(extension, Mapping):
        raise ValueError(f"'{EXTENSION_KEY}' of '{key}' must be a mapping")

    image = service.get("image")
    fields: Dict[str, Any] = {
        "name": str(service.get("container_name") or key),
        "source": str(source),
        "image": None if service.get("build") is not None else image,
        "build": _build(service.get("build"), source.parent, image),
        "ports": service.get("ports") or (),
        "volumes": service.get("volumes") or (),
        "env": _key_value_pairs(service.get("environment"), "environment"),
        "labels": _key_value_pairs(service.get("labels"), "labels"),
        "network": _network(service),
        "healthcheck": _healthcheck(service.get("healthcheck")),
        "readiness_timeout": parse_duration(extension.get("readiness_timeout")),
        "restart_policy": service.get("restart"),
        "command": service.get("command"),
    }
    if isinstance(fields["command"], list):
        fields["command"] = tuple(str(part) for part in fields["command"])
    return fields


class ComposeSpecLoader:
    """Loads WorkloadDescriptors from compose or custom YAML files."""

    def _read(self, path: Path) -> Dict[str, Any]:
        if not path.is_file():
            raise NotFound(f"spec file not found: {path}", target=str(path), operation="load")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"invalid YAML syntax in {path}", target=str(path), operation="load", cause=e) from e
        if not isinstance(data, dict) or not data:
            raise ValidationError(f"{path} does not contain a YAML mapping", target=str(path), operation="load")
        return data

    def _services(self, path: Path) -> Dict[str, Any]:
        data = self._read(path)
        services = data.get("services")
        if services is None:
            key = data.get("name") or data.get("container_name")
            if not key:
                raise ValidationError(
                    "custom spec needs 'name' or 'container_name'", target=str(path), operation="load"
                )
            custom = {k: v for k, v in data.items() if k != "name"}
            return {str(key): custom}
        if not isinstance(services, dict) or not services:
            raise ValidationError("'services' must be a non-empty mapping", target=str(path), operation="load")
        return services

    @staticmethod
    def _workload_name(key: Any, service: Any) -> str:
        if isinstance(service, Mapping) and service.get("container_name"):
            return str(service["container_name"])
        return str(key)

    def _descriptor(self, key: Any, service: Any, path: Path) -> WorkloadDescriptor:
        name = self._workload_name(key, service)
        try:
            fields = service_to_fields(str(key), service, path)
        except ValueError as e:
            raise ValidationError(str(e), target=name, operation="load", cause=e) from e
        return descriptor_from_dict(fields)

    def workload_names(self, path: Union[str, Path]) -> List[str]:
        """
        Names of every workload in ``path``, in file order.

        Only the file itself is validated; a malformed service still
        contributes its name.
        """
        path = Path(path).expanduser().resolve()
        return [self._workload_name(key, service) for key, service in self._services(path).items()]

    def load_each(self, path: Union[str, Path]) -> List[Tuple[str, Union[WorkloadDescriptor, ValidationError]]]:
        """
        Validate every workload in ``path`` independently.

        Returns:
            ``(name, descriptor)`` pairs, with a ValidationError in place of
            the descriptor for each service that failed to validate.

        Raises:
            NotFound, ValidationError: If the file itself is missing or malformed.
        """
        path = Path(path).expanduser().resolve()
        results: List[Tuple[str, Union[WorkloadDescriptor, ValidationError]]] = []
        for key, service in self._services(path).items():
            name = self._workload_name(key, service)
            try:
                results.append((name, self._descriptor(key, service, path)))
            except ValidationError as e:
                logger.warning(f"Workload '{name}' in {path} is invalid: {e}")
                results.append((name, e))
        return results

    def load_all(self, path: Union[str, Path]) -> List[WorkloadDescriptor]:
        """Every workload defined in ``path``, in file order; the first invalid one raises."""
        descriptors = []
        for _, loaded in self.load_each(path):
            if isinstance(loaded, ValidationError):
                raise loaded
            descriptors.append(loaded)
        logger.debug(f"Loaded {len(descriptors)} workload(s) from {path}")
        return descriptors

    def load(self, path: Union[str, Path], name: Optional[str] = None) -> WorkloadDescriptor:
        """
        Load one workload from ``path``, validating only that workload.

        Args:
            path: Spec file.
            name: Container name or service key; defaults to the first workload.

        Raises:
            NotFound: If the file, or the named workload in it, does not exist.
            ValidationError: If the file or the workload is malformed.
        """
        path = Path(path).expanduser().resolve()
        services = self._services(path)
        if name is None:
            key = next(iter(services))
            return self._descriptor(key, services[key], path)
        for key, service in services.items():
            if self._workload_name(key, service) == name:
                return self._descriptor(key, service, path)
        # fall back to the service key when container_name renamed it
        if name in services:
            return self._descriptor(name, services[name], path)
        raise NotFound(f"no workload named '{name}' in {path}", target=name, operation="load")


__all__ = ["ComposeSpecLoader", "parse_duration", "service_to_fields"]
