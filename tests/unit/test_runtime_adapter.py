"""
Unit tests for the Docker runtime adapter and its error translation.
"""

from unittest.mock import MagicMock

import docker
import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound
from docker.errors import NotFound as DockerNotFound

from docker_ops_manager.core.runtime import (
    MANAGED_LABEL,
    MANAGED_VALUE,
    DockerRuntimeAdapter,
    HealthStatus,
    translate_error,
)
from docker_ops_manager.errors import DefinitiveRuntimeError, NotFound, TransientRuntimeError
from fixtures.runtime_fixtures import make_descriptor


def _api_error(status, explanation="boom"):
    response = requests.Response()
    response.status_code = status
    return APIError("docker said no", response=response, explanation=explanation)


@pytest.mark.parametrize(
    "error, expected",
    [
        (DockerNotFound("gone"), NotFound),
        (ImageNotFound("no image"), DefinitiveRuntimeError),
        (_api_error(400), DefinitiveRuntimeError),
        (_api_error(409, "Conflict. The container name is already in use"), DefinitiveRuntimeError),
        (_api_error(409, "removal of container web is already in progress"), TransientRuntimeError),
        (_api_error(500), TransientRuntimeError),
        (_api_error(503), TransientRuntimeError),
        (requests.exceptions.ConnectionError("reset"), TransientRuntimeError),
        (requests.exceptions.ReadTimeout("slow"), TransientRuntimeError),
        (DockerException("socket missing"), TransientRuntimeError),
    ],
)
def test_translate_error(error, expected):
    translated = translate_error(error, "web", "remove")

    assert type(translated) is expected
    assert translated.target == "web"
    assert translated.operation == "remove"
    assert translated.cause is error


def test_unrelated_errors_pass_through():
    error = KeyError("x")
    assert translate_error(error, "web", "create") is error


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def adapter(client):
    return DockerRuntimeAdapter(client)


def test_exists(adapter, client):
    assert adapter.exists("web") is True
    client.containers.get.side_effect = DockerNotFound("gone")
    assert adapter.exists("web") is False


def test_exists_propagates_transient(adapter, client):
    client.containers.get.side_effect = _api_error(500)

    with pytest.raises(TransientRuntimeError):
        adapter.exists("web")


def test_create_and_start_runs_container(adapter, client):
    client.containers.run.return_value = MagicMock(id="abc123")
    descriptor = make_descriptor(
        "web",
        source="/specs/app.yml",
        ports=["8080:80"],
        volumes=["data:/data:ro"],
        env={"A": "1"},
        healthcheck={"test": ["CMD", "true"], "interval": 2},
        restart_policy="unless-stopped",
    )

    assert adapter.create(descriptor, start=True) == "abc123"

    kwargs = client.containers.run.call_args.kwargs
    assert kwargs["name"] == "web"
    assert kwargs["detach"] is True
    assert kwargs["ports"] == {"80/tcp": 8080}
    assert kwargs["volumes"] == {"data": {"bind": "/data", "mode": "ro"}}
    assert kwargs["labels"][MANAGED_LABEL] == MANAGED_VALUE
    assert kwargs["labels"]["docker-ops.source"] == "/specs/app.yml"
    assert kwargs["healthcheck"] == {"test": ["CMD", "true"], "interval": 2_000_000_000}
    assert kwargs["restart_policy"] == {"Name": "unless-stopped"}
    client.containers.create.assert_not_called()


def test_create_without_start_uses_create(adapter, client):
    client.containers.create.return_value = MagicMock(id="def456")

    assert adapter.create(make_descriptor("web"), start=False) == "def456"
    assert "detach" not in client.containers.create.call_args.kwargs
    client.containers.run.assert_not_called()


def test_missing_image_is_pulled(adapter, client):
    client.images.get.side_effect = ImageNotFound("missing")
    client.containers.run.return_value = MagicMock(id="x")

    adapter.create(make_descriptor("web", image="nginx:alpine"), start=True)

    client.images.pull.assert_called_once_with("nginx:alpine")


def test_pull_failure_is_definitive(adapter, client):
    client.images.get.side_effect = ImageNotFound("missing")
    client.images.pull.side_effect = ImageNotFound("no such image in registry")

    with pytest.raises(DefinitiveRuntimeError):
        adapter.create(make_descriptor("web"), start=True)


def test_build_reference_builds_image(adapter, client):
    client.containers.run.return_value = MagicMock(id="x")
    descriptor = make_descriptor("app", image=None, build={"context": "/src/app", "tag": "app:dev"})

    adapter.create(descriptor, start=True)

    client.images.build.assert_called_once_with(path="/src/app", dockerfile=None, tag="app:dev", rm=True)
    assert client.containers.run.call_args.kwargs["image"] == "app:dev"


@pytest.mark.parametrize(
    "attrs, expected",
    [
        ({"State": {"Health": {"Status": "healthy"}}}, HealthStatus.HEALTHY),
        ({"State": {"Health": {"Status": "starting"}}}, HealthStatus.STARTING),
        ({"State": {"Health": {"Status": "unhealthy"}}}, HealthStatus.UNHEALTHY),
        ({"State": {"Status": "running"}}, HealthStatus.NONE),
        ({}, HealthStatus.NONE),
    ],
)
def test_inspect_health(adapter, client, attrs, expected):
    client.containers.get.return_value = MagicMock(attrs=attrs)

    assert adapter.inspect_health("web") is expected


def test_inspect_running(adapter, client):
    client.containers.get.return_value = MagicMock(status="running")
    assert adapter.inspect_running("web") is True
    client.containers.get.return_value = MagicMock(status="exited")
    assert adapter.inspect_running("web") is False


def test_remove_translates_errors(adapter, client):
    container = MagicMock()
    container.remove.side_effect = _api_error(500)
    client.containers.get.return_value = container

    with pytest.raises(TransientRuntimeError):
        adapter.remove("web", force=True)
    container.remove.assert_called_once_with(force=True)


def test_stop_passes_timeout(adapter, client):
    container = MagicMock()
    client.containers.get.return_value = container

    adapter.stop("web", 7)

    container.stop.assert_called_once_with(timeout=7)


def test_logs_decodes_output(adapter, client):
    container = MagicMock()
    container.logs.return_value = b"line one\nline \xff two\n"
    client.containers.get.return_value = container

    assert adapter.logs("web", tail=5, timestamps=True) == "line one\nline \ufffd two\n"
    container.logs.assert_called_once_with(tail=5, timestamps=True)

    adapter.logs("web")
    assert container.logs.call_args.kwargs == {"tail": "all", "timestamps": False}


def test_logs_missing_container(adapter, client):
    client.containers.get.side_effect = DockerNotFound("gone")

    with pytest.raises(NotFound):
        adapter.logs("web")


def test_list_and_list_managed(adapter, client):
    first, second = MagicMock(), MagicMock()
    first.name, second.name = "web", "db"
    client.containers.list.return_value = [first, second]

    assert adapter.list() == ["web", "db"]
    adapter.list_managed()
    assert client.containers.list.call_args.kwargs["filters"] == {"label": f"{MANAGED_LABEL}={MANAGED_VALUE}"}


def test_client_init_retries_then_fails(monkeypatch):
    sleeps = []
    monkeypatch.setattr(docker, "from_env", MagicMock(side_effect=DockerException("no socket")))

    with pytest.raises(TransientRuntimeError):
        DockerRuntimeAdapter(connect_retries=3, sleep=sleeps.append)
    assert sleeps == [1, 2]
