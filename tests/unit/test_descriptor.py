"""
Unit tests for workload descriptor validation.
"""

import pytest

from docker_ops_manager.core.descriptor import (
    HealthCheckSpec,
    PortMapping,
    VolumeMount,
    WorkloadDescriptor,
    descriptor_from_dict,
    validate_container_name,
)
from docker_ops_manager.errors import ValidationError


@pytest.mark.parametrize("name", ["web", "web-1", "my_app.v2", "_hidden", "A" * 128])
def test_valid_names(name):
    assert validate_container_name(name) == name


@pytest.mark.parametrize("name", ["", "-web", ".web", "has space", "semi;colon", "A" * 129])
def test_invalid_names(name):
    with pytest.raises(ValidationError):
        validate_container_name(name)


def test_port_parsing_forms():
    assert PortMapping.parse("8080:80") == PortMapping(container=80, host=8080)
    assert PortMapping.parse(443) == PortMapping(container=443)
    udp = PortMapping.parse("127.0.0.1:5353:53/udp")
    assert (udp.host_ip, udp.host, udp.container, udp.protocol) == ("127.0.0.1", 5353, 53, "udp")
    assert udp.key == "53/udp"


def test_invalid_port_is_validation_error():
    with pytest.raises(ValidationError) as excinfo:
        descriptor_from_dict({"name": "web", "image": "nginx", "ports": ["80:abc"]})
    assert excinfo.value.target == "web"


def test_volume_parsing():
    assert VolumeMount.parse("data:/var/lib/data:ro") == VolumeMount(source="data", target="/var/lib/data", mode="ro")
    with pytest.raises(ValueError):
        VolumeMount.parse("just-one-part")


def test_healthcheck_string_and_docker_conversion():
    spec = HealthCheckSpec(test="curl -f http://localhost", interval=1.5, retries=3)

    assert spec.test == ("CMD-SHELL", "curl -f http://localhost")
    assert spec.to_docker() == {
        "test": ["CMD-SHELL", "curl -f http://localhost"],
        "interval": 1_500_000_000,
        "retries": 3,
    }


def test_image_or_build_required():
    with pytest.raises(ValidationError):
        descriptor_from_dict({"name": "web"})

    built = descriptor_from_dict({"name": "web", "build": {"context": "."}})
    assert built.image_ref == "web:latest"


def test_env_and_labels_are_stringified():
    d = descriptor_from_dict({"name": "web", "image": "nginx", "env": {"PORT": 80, "EMPTY": None}})
    assert d.env == {"PORT": "80", "EMPTY": ""}


def test_descriptor_is_immutable_and_strict():
    d = descriptor_from_dict({"name": "web", "image": "nginx"})
    with pytest.raises(Exception):
        d.image = "other"
    with pytest.raises(ValidationError):
        descriptor_from_dict({"name": "web", "image": "nginx", "surprise": True})


def test_readiness_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        descriptor_from_dict({"name": "web", "image": "nginx", "readiness_timeout": 0})


def test_has_healthcheck():
    plain = WorkloadDescriptor(name="web", image="nginx")
    checked = WorkloadDescriptor(name="web", image="nginx", healthcheck={"test": ["CMD", "true"]})
    assert not plain.has_healthcheck
    assert checked.has_healthcheck
