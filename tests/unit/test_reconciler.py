"""
Unit tests for reconciliation of tracked state against the runtime.
"""

from docker_ops_manager.errors import TransientRuntimeError
from docker_ops_manager.monitoring.reconciler import ReconciliationSweeper
from docker_ops_manager.storage.state_store import Status, TrackedRecord


def _track(store, name, status=Status.RUNNING):
    store.put(TrackedRecord(name=name, status=status).record("generate", status, max_history=20))


def test_sweep_prunes_vanished_containers(fake_runtime, store):
    fake_runtime.add("web")
    _track(store, "web")
    _track(store, "gone")
    store.save()

    pruned = ReconciliationSweeper(fake_runtime, store).sweep()

    assert pruned == ["gone"]
    assert store.names() == ["web"]
    assert "gone" not in store.path.read_text()


def test_sweep_twice_is_byte_identical(fake_runtime, store):
    fake_runtime.add("web")
    _track(store, "web")
    _track(store, "gone")
    store.save()
    sweeper = ReconciliationSweeper(fake_runtime, store)

    sweeper.sweep()
    first = store.path.read_bytes()
    assert sweeper.sweep() == []
    assert store.path.read_bytes() == first


def test_noop_sweep_does_not_write(fake_runtime, store):
    fake_runtime.add("web")
    _track(store, "web")
    store.save()
    before = store.path.stat().st_mtime_ns
    content = store.path.read_bytes()

    assert ReconciliationSweeper(fake_runtime, store).sweep() == []
    assert store.path.read_bytes() == content
    assert store.path.stat().st_mtime_ns == before


def test_sweep_never_adds_untracked_containers(fake_runtime, store):
    fake_runtime.add("stranger")

    ReconciliationSweeper(fake_runtime, store).sweep()

    assert store.names() == []


def test_sweep_keeps_record_on_transient_error(fake_runtime, store):
    _track(store, "web")
    fake_runtime.fail("exists", "web", TransientRuntimeError("daemon busy", target="web"))

    assert ReconciliationSweeper(fake_runtime, store).sweep() == []
    assert store.names() == ["web"]


def test_sweep_skips_records_with_unknown_status(fake_runtime, store):
    _track(store, "maybe", Status.UNKNOWN)

    assert ReconciliationSweeper(fake_runtime, store).sweep() == []
    assert ("exists", "maybe") not in fake_runtime.calls


def test_refresh_updates_running_and_stopped(fake_runtime, store):
    fake_runtime.add("web", running=False)
    fake_runtime.add("db", running=True)
    _track(store, "web", Status.RUNNING)
    _track(store, "db", Status.STOPPED)
    _track(store, "gone", Status.RUNNING)

    pruned = ReconciliationSweeper(fake_runtime, store).refresh()

    assert pruned == ["gone"]
    assert store.get("web").status is Status.STOPPED
    assert store.get("db").status is Status.RUNNING


def test_refresh_leaves_created_containers_alone(fake_runtime, store):
    fake_runtime.add("web", running=False)
    _track(store, "web", Status.CREATED)

    ReconciliationSweeper(fake_runtime, store).refresh()

    assert store.get("web").status is Status.CREATED
