"""
Unit tests for the lifecycle orchestrator against the in-memory runtime.
"""

import pytest

from docker_ops_manager.core.orchestrator import (
    CleanupTarget,
    LifecycleOrchestrator,
    OperationKind,
    OperationRequest,
)
from docker_ops_manager.core.runtime import HealthStatus
from docker_ops_manager.errors import (
    AlreadyExists,
    NotFound,
    NotPreviouslyGenerated,
    PartialFailure,
    ReadinessUnhealthy,
    ValidationError,
)
from docker_ops_manager.monitoring.readiness import ReadinessMonitor
from docker_ops_manager.storage.state_store import Readiness, StateStore, Status
from fixtures.runtime_fixtures import make_descriptor

HEALTHCHECK = {"test": ["CMD", "true"], "interval": 1}


def _spec_file(tmp_path, body=None):
    path = tmp_path / "compose.yml"
    path.write_text(body or (
        "services:\n"
        "  web:\n"
        "    image: nginx:alpine\n"
        "  db:\n"
        "    image: postgres:16-alpine\n"
        "    x-docker-ops:\n"
        "      readiness_timeout: 7\n"
    ))
    return path


# ---------- generate ----------

def test_generate_without_healthcheck_records_running(orchestrator, store, fake_runtime):
    outcome = orchestrator.generate(make_descriptor("web", source="/specs/app.yml"))

    record = StateStore(store.path).load().operations["web"]
    assert outcome.status is Status.RUNNING
    assert record.status is Status.RUNNING
    assert record.readiness is Readiness.READY
    assert record.source == "/specs/app.yml"
    assert record.runtime_id == fake_runtime.containers["web"].id
    assert store.state.last_container == "web"


def test_generate_timeout_records_created_unknown(orchestrator, store, fake_runtime, fake_clock):
    fake_runtime.never_running.add("web")

    outcome = orchestrator.generate(make_descriptor("web"), timeout=5)

    record = StateStore(store.path).load().operations["web"]
    assert record.status is Status.CREATED
    assert record.readiness is Readiness.UNKNOWN
    assert outcome.warnings and "not ready within 5s" in outcome.warnings[0]
    assert fake_clock.now == 5
    # container left as-is
    assert fake_runtime.exists("web")


def test_generate_waits_for_healthy(orchestrator, store, fake_runtime):
    fake_runtime.health_script["web"] = [HealthStatus.STARTING, HealthStatus.HEALTHY]

    outcome = orchestrator.generate(make_descriptor("web", healthcheck=HEALTHCHECK))

    assert outcome.readiness is Readiness.READY
    assert store.get("web").status is Status.RUNNING


def test_generate_unhealthy_is_recorded_then_raised(orchestrator, store, fake_runtime):
    fake_runtime.health_script["web"] = [HealthStatus.UNHEALTHY]

    with pytest.raises(ReadinessUnhealthy):
        orchestrator.generate(make_descriptor("web", healthcheck=HEALTHCHECK))

    record = StateStore(store.path).load().operations["web"]
    assert record.readiness is Readiness.UNHEALTHY


def test_generate_ignores_image_healthcheck_when_none_declared(orchestrator, store, fake_runtime):
    fake_runtime.health_script["web"] = [HealthStatus.UNHEALTHY]

    outcome = orchestrator.generate(make_descriptor("web"))

    assert outcome.status is Status.RUNNING
    assert outcome.readiness is Readiness.READY
    assert store.get("web").readiness is Readiness.READY


def test_generate_container_vanishing_during_wait_drops_record(orchestrator, store, fake_runtime):
    fake_runtime.health_script["web"] = [HealthStatus.STARTING, NotFound("no such container", target="web")]

    with pytest.raises(NotFound):
        orchestrator.generate(make_descriptor("web", healthcheck=HEALTHCHECK))

    assert store.get("web") is None
    assert StateStore(store.path).load().operations == {}


def test_generate_no_start_skips_readiness(orchestrator, store, fake_runtime):
    outcome = orchestrator.generate(make_descriptor("web"), start=False)

    assert outcome.status is Status.CREATED
    assert store.get("web").readiness is None
    assert fake_runtime.ops("inspect_running") == []
    assert fake_runtime.containers["web"].running is False


def test_generate_existing_without_force_has_no_side_effects(orchestrator, store, fake_runtime):
    fake_runtime.add("web")
    before = list(fake_runtime.containers)

    with pytest.raises(AlreadyExists):
        orchestrator.generate(make_descriptor("web"))

    assert [c[0] for c in fake_runtime.calls] == ["exists"]
    assert list(fake_runtime.containers) == before
    assert not store.path.exists()


def test_forced_generate_removes_before_create(orchestrator, fake_runtime):
    old_id = fake_runtime.add("web").id

    outcome = orchestrator.generate(make_descriptor("web"), force=True)

    ops = [c[0] for c in fake_runtime.calls]
    assert ops.index("remove") < ops.index("create")
    # verified absent between removal and creation
    assert "exists" in ops[ops.index("remove"):ops.index("create")]
    assert outcome.removed == ["web"]
    assert fake_runtime.containers["web"].id != old_id


def test_forced_generate_aborts_when_old_container_survives(orchestrator, fake_runtime):
    fake_runtime.add("web")
    fake_runtime.sticky.add("web")

    with pytest.raises(PartialFailure):
        orchestrator.generate(make_descriptor("web"), force=True)

    assert fake_runtime.ops("create") == []


def test_generate_replaces_stale_record(orchestrator, store):
    orchestrator.generate(make_descriptor("web"))
    orchestrator.runtime.containers.clear()

    orchestrator.generate(make_descriptor("web"))

    assert [e.operation for e in store.get("web").history] == ["generate", "generate"]


def test_interrupt_during_readiness_leaves_created_unknown(fake_runtime, store, settings, fake_clock):
    fake_runtime.never_running.add("web")

    def interrupted(seconds):
        raise KeyboardInterrupt

    monitor = ReadinessMonitor(fake_runtime, clock=fake_clock.monotonic, sleep=interrupted)
    orchestrator = LifecycleOrchestrator(fake_runtime, store, settings=settings, monitor=monitor)

    with pytest.raises(KeyboardInterrupt):
        orchestrator.generate(make_descriptor("web"))

    record = StateStore(store.path).load().operations["web"]
    assert record.status is Status.CREATED
    assert record.readiness is Readiness.UNKNOWN


# ---------- install / reinstall / update ----------

def test_install_requires_previous_generate(orchestrator):
    with pytest.raises(NotPreviouslyGenerated):
        orchestrator.install("web")


def test_install_reloads_descriptor_from_source(orchestrator, store, fake_runtime, tmp_path):
    spec = _spec_file(tmp_path)
    descriptor = orchestrator.loader.load(spec, "db")
    orchestrator.generate(descriptor)
    fake_runtime.containers.clear()

    outcome = orchestrator.install("db")

    assert outcome.operation == "install"
    assert fake_runtime.containers["db"].descriptor.readiness_timeout == 7
    assert store.get("db").last_operation == "install"


def test_install_over_existing_container_needs_force(orchestrator, tmp_path):
    orchestrator.generate(orchestrator.loader.load(_spec_file(tmp_path), "web"))

    with pytest.raises(AlreadyExists):
        orchestrator.install("web")


def test_reinstall_requires_existing_container(orchestrator, tmp_path, fake_runtime):
    orchestrator.generate(orchestrator.loader.load(_spec_file(tmp_path), "web"))
    fake_runtime.containers.clear()

    with pytest.raises(NotFound):
        orchestrator.reinstall("web")


def test_reinstall_replaces_container(orchestrator, tmp_path, fake_runtime, store):
    orchestrator.generate(orchestrator.loader.load(_spec_file(tmp_path), "web"))
    old_id = fake_runtime.containers["web"].id

    orchestrator.reinstall("web")

    assert fake_runtime.containers["web"].id != old_id
    assert store.get("web").last_operation == "reinstall"


def test_update_keeps_stopped_container_stopped(orchestrator, tmp_path, fake_runtime, store):
    orchestrator.generate(orchestrator.loader.load(_spec_file(tmp_path), "web"))
    orchestrator.stop("web")

    orchestrator.update("web")

    assert fake_runtime.containers["web"].running is False
    assert store.get("web").status is Status.CREATED


# ---------- start / stop / restart ----------

def test_start_already_running_is_noop(orchestrator, fake_runtime):
    orchestrator.generate(make_descriptor("web"))
    fake_runtime.calls.clear()

    outcome = orchestrator.start("web")

    assert outcome.status is Status.RUNNING
    assert fake_runtime.ops("start") == []


def test_start_missing_container_fails(orchestrator):
    with pytest.raises(NotFound):
        orchestrator.start("web")


def test_stop_then_start_updates_status(orchestrator, store, fake_runtime):
    orchestrator.generate(make_descriptor("web"))

    orchestrator.stop("web")
    assert store.get("web").status is Status.STOPPED
    assert store.get("web").readiness is None

    orchestrator.start("web")
    assert store.get("web").status is Status.RUNNING
    assert store.get("web").readiness is Readiness.READY


def test_restart_is_stop_then_start_with_readiness(orchestrator, store, fake_runtime):
    orchestrator.generate(make_descriptor("web"))
    fake_runtime.calls.clear()

    orchestrator.restart("web")

    ops = [c[0] for c in fake_runtime.calls]
    assert ops.index("stop") < ops.index("start") < ops.index("inspect_running", ops.index("start"))
    assert [e.operation for e in store.get("web").history][-2:] == ["stop", "restart"]


def test_untracked_container_is_started_but_not_recorded(orchestrator, fake_runtime, store):
    fake_runtime.add("stranger", running=False)

    orchestrator.start("stranger")

    assert fake_runtime.containers["stranger"].running
    assert store.get("stranger") is None


def test_invalid_name_is_rejected(orchestrator):
    with pytest.raises(ValidationError):
        orchestrator.start("-bad name")


# ---------- cleanup ----------

def test_cleanup_absent_name_clears_state(orchestrator, store, fake_runtime):
    orchestrator.generate(make_descriptor("web"))
    fake_runtime.containers.clear()

    orchestrator.cleanup(CleanupTarget.single("web"))

    assert not fake_runtime.exists("web")
    assert StateStore(store.path).load().operations == {}


def test_cleanup_list_removes_each(orchestrator, fake_runtime, store):
    orchestrator.generate(make_descriptor("web"))
    orchestrator.generate(make_descriptor("db"))

    outcome = orchestrator.cleanup(CleanupTarget.many(["web", "db"]))

    assert outcome.removed == ["web", "db"]
    assert fake_runtime.containers == {}
    assert store.names() == []


def test_cleanup_partial_failure_keeps_surviving_record(orchestrator, fake_runtime, store):
    orchestrator.generate(make_descriptor("web"))
    orchestrator.generate(make_descriptor("db"))
    fake_runtime.sticky.add("db")

    with pytest.raises(PartialFailure) as excinfo:
        orchestrator.cleanup(CleanupTarget.many(["web", "db"]), force=True)

    assert excinfo.value.remaining == ["db"]
    persisted = StateStore(store.path).load()
    assert list(persisted.operations) == ["db"]


def test_cleanup_state_managed_leaves_untracked(orchestrator, fake_runtime, store):
    orchestrator.generate(make_descriptor("web"))
    fake_runtime.add("stranger")

    orchestrator.cleanup(CleanupTarget.state_managed(), force=True)

    assert list(fake_runtime.containers) == ["stranger"]
    assert store.names() == []


def test_cleanup_full_runtime_requires_confirmation(orchestrator, fake_runtime):
    fake_runtime.add("stranger")

    with pytest.raises(ValidationError):
        orchestrator.cleanup(CleanupTarget.full_runtime())
    with pytest.raises(ValidationError):
        orchestrator.cleanup(CleanupTarget.full_runtime(), confirm=lambda names: False)

    assert fake_runtime.ops("remove") == []


def test_cleanup_full_runtime_with_confirmation(orchestrator, fake_runtime):
    fake_runtime.add("stranger")
    seen = []

    orchestrator.cleanup(CleanupTarget.full_runtime(), confirm=lambda names: seen.extend(names) or True)

    assert seen == ["stranger"]
    assert fake_runtime.containers == {}


def test_cleanup_full_runtime_force_skips_confirmation(orchestrator, fake_runtime):
    fake_runtime.add("stranger")

    orchestrator.cleanup(CleanupTarget.full_runtime(), force=True)

    assert fake_runtime.containers == {}


def test_cleanup_full_runtime_with_nothing_to_remove_does_not_ask(orchestrator, fake_runtime):
    asked = []

    outcome = orchestrator.cleanup(CleanupTarget.full_runtime(), confirm=lambda names: asked.append(names) or False)

    assert asked == []
    assert outcome.removed == []
    assert fake_runtime.ops("remove") == []


def test_cleanup_target_validation():
    with pytest.raises(ValidationError):
        CleanupTarget.many([])


# ---------- status ----------

def test_status_combines_record_and_runtime(orchestrator, fake_runtime):
    orchestrator.generate(make_descriptor("web"))
    orchestrator.generate(make_descriptor("db"))
    fake_runtime.containers["db"].running = False
    del fake_runtime.containers["web"]

    rows = {row["name"]: row for row in orchestrator.status()}

    assert rows["web"]["exists"] is False
    assert rows["db"]["running"] is False
    assert rows["db"]["status"] == "running"


# ---------- execute ----------

def test_execute_batch_continues_past_failure(orchestrator, fake_runtime):
    for name in ["a", "b", "d", "e"]:
        fake_runtime.add(name, running=False)
    request = OperationRequest(kind=OperationKind.START, targets=("a", "b", "bad name", "d", "e"))

    result = orchestrator.execute(request)

    assert result.succeeded == 4
    assert result.failed == 1
    assert result.outcomes[2].target == "bad name"
    assert result.outcomes[2].error_kind == "validation"
    assert [o.target for o in result.outcomes] == ["a", "b", "bad name", "d", "e"]
    assert fake_runtime.containers["e"].running


def test_execute_generate_many(orchestrator, store):
    request = OperationRequest(
        kind="generate",
        descriptors=(make_descriptor("web"), make_descriptor("db")),
        no_start=True,
    )

    result = orchestrator.execute(request)

    assert result.ok
    assert store.get("db").status is Status.CREATED


def test_execute_cleanup_all_state(orchestrator, fake_runtime, store):
    orchestrator.generate(make_descriptor("web"))
    orchestrator.generate(make_descriptor("db"))

    result = orchestrator.execute(OperationRequest(kind=OperationKind.CLEANUP, all_state=True, force=True))

    assert result.total == 2 and result.ok
    assert StateStore(store.path).load().operations == {}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"kind": "explode", "targets": ("web",)},
        {"kind": OperationKind.START},
        {"kind": OperationKind.GENERATE},
        {"kind": OperationKind.START, "targets": ("web",), "all_state": True},
        {"kind": OperationKind.CLEANUP, "all_state": True, "all_runtime": True},
        {"kind": OperationKind.START, "targets": ("web",), "timeout": 0},
    ],
)
def test_operation_request_validation(kwargs):
    with pytest.raises(ValidationError):
        OperationRequest(**kwargs)


def test_execute_generate_from_file_isolates_invalid_workload(orchestrator, store, tmp_path):
    body = "services:\n"
    for name in ["s1", "s2", "s3", "s4", "s5"]:
        body += f"  {name}:\n    image: nginx:alpine\n"
        if name == "s3":
            body += "    ports: ['notaport']\n"
    spec = _spec_file(tmp_path, body)

    result = orchestrator.execute(OperationRequest(kind=OperationKind.GENERATE, source=str(spec), no_start=True))

    assert [o.target for o in result.outcomes] == ["s1", "s2", "s3", "s4", "s5"]
    assert result.succeeded == 4
    assert result.failed == 1
    assert result.outcomes[2].error_kind == "validation"
    assert sorted(StateStore(store.path).load().operations) == ["s1", "s2", "s4", "s5"]


def test_execute_generate_named_workload_skips_invalid_siblings(orchestrator, store, tmp_path):
    spec = _spec_file(tmp_path, "services:\n  web:\n    image: nginx:alpine\n  broken:\n    ports: ['80']\n")

    result = orchestrator.execute(OperationRequest(kind=OperationKind.GENERATE, source=str(spec), targets=("web",)))

    assert result.ok
    assert store.names() == ["web"]


def test_execute_generate_missing_file_fails_whole_request(orchestrator, tmp_path):
    request = OperationRequest(kind=OperationKind.GENERATE, source=str(tmp_path / "nope.yml"))

    with pytest.raises(NotFound):
        orchestrator.execute(request)


def test_generate_request_takes_workloads_or_file():
    with pytest.raises(ValidationError):
        OperationRequest(kind=OperationKind.GENERATE, descriptors=(make_descriptor("web"),), source="app.yml")
    with pytest.raises(ValidationError):
        OperationRequest(kind=OperationKind.START, targets=("web",), source="app.yml")


# ---------- list / logs ----------

def test_managed_lists_only_labelled_containers(orchestrator, fake_runtime):
    orchestrator.generate(make_descriptor("web", source="/specs/app.yml"))
    fake_runtime.add("stranger")

    rows = orchestrator.managed()

    assert rows == [{"name": "web", "tracked": True, "running": True, "source": "/specs/app.yml"}]


def test_logs_tail_and_timestamps(orchestrator, fake_runtime):
    fake_runtime.add("web").log_lines = ["booting", "listening on :80", "GET / 200"]

    assert orchestrator.logs("web", tail=2) == ["listening on :80", "GET / 200"]
    stamped = orchestrator.logs("web", tail=1, timestamps=True)
    assert stamped[0].endswith(" GET / 200")
    assert stamped[0] != "GET / 200"


def test_logs_pattern_is_case_insensitive(orchestrator, fake_runtime):
    fake_runtime.add("web").log_lines = ["INFO ready", "ERROR disk full", "error: retrying"]

    assert orchestrator.logs("web", pattern="error") == ["ERROR disk full", "error: retrying"]


@pytest.mark.parametrize("kwargs", [{"tail": -1}, {"pattern": "("}])
def test_logs_rejects_bad_arguments(orchestrator, fake_runtime, kwargs):
    fake_runtime.add("web")

    with pytest.raises(ValidationError):
        orchestrator.logs("web", **kwargs)
    assert fake_runtime.ops("logs") == []


def test_logs_missing_container(orchestrator):
    with pytest.raises(NotFound):
        orchestrator.logs("ghost")
