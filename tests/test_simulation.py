"""Tests for dronectl.simulation -- the stand-in process scheduler."""

from dronectl.resources import (
    POD_FAILED,
    POD_PENDING,
    POD_RUNNING,
    Deployment,
    DeploymentSpec,
    ObjectKey,
    ObjectMeta,
    Pod,
    PodSpec,
)
from dronectl.simulation import SimulatedScheduler
from dronectl.store import DELETED, WatchEvent


def _pod(name="p", node="n0"):
    return Pod(metadata=ObjectMeta(name, "default"), spec=PodSpec(node_name=node))


class TestPods:
    def test_bound_pod_starts_running(self, store):
        SimulatedScheduler(store).start()
        store.create(_pod())
        assert store.get(Pod, ObjectKey("default", "p")).status.phase == POD_RUNNING

    def test_unbound_pod_stays_pending(self, store):
        SimulatedScheduler(store).start()
        store.create(_pod(node=None))
        assert store.get(Pod, ObjectKey("default", "p")).status.phase == POD_PENDING

    def test_failed_pod_is_left_alone(self, store):
        sim = SimulatedScheduler(store)
        sim.start()
        pod = store.create(_pod())
        pod = store.get(Pod, pod.key)
        pod.status.phase = POD_FAILED
        store.update_status(pod)
        assert store.get(Pod, pod.key).status.phase == POD_FAILED


class TestDeployments:
    def test_observed_follows_declared(self, store):
        SimulatedScheduler(store).start()
        store.create(
            Deployment(metadata=ObjectMeta("mydrones", "default"), spec=DeploymentSpec(replicas=3))
        )
        dep = store.get(Deployment, ObjectKey("default", "mydrones"))
        assert dep.status.replicas == 3

        dep.spec.replicas = 5
        store.update(dep)
        assert store.get(Deployment, dep.key).status.replicas == 5


class TestLifecycle:
    def test_stop_detaches(self, store):
        sim = SimulatedScheduler(store)
        sim.start()
        sim.stop()
        store.create(_pod())
        assert store.get(Pod, ObjectKey("default", "p")).status.phase == POD_PENDING

    def test_start_is_idempotent(self, store):
        sim = SimulatedScheduler(store)
        sim.start()
        sim.start()
        store.create(_pod())
        # A single watch means a single status write.
        assert store.writes.count(("update_status", "Pod", "p")) == 1

    def test_stale_event_is_skipped(self, store):
        sim = SimulatedScheduler(store)
        pod = store.create(_pod())
        store.delete(pod)
        # Event for a record that is already gone must not raise.
        sim.on_event(WatchEvent("MODIFIED", pod))
        sim.on_event(WatchEvent(DELETED, pod))
        assert store.list(Pod) == []
