"""End-to-end convergence through the Manager, with events driving every pass."""

import copy
import time

import pytest

from dronectl.config import DEFAULTS
from dronectl.controllers import setup_controllers
from dronectl.manager import Manager
from dronectl.resources import Deployment, Drone, Node, ObjectKey, ObjectMeta, Pod, Swarm
from dronectl.simulation import SimulatedScheduler

FAST_BACKOFF = {"base_s": 0.001, "max_s": 0.01}


def _settle(manager, done, timeout=3.0):
    """Drain the queues until *done()* holds, letting backoff timers fire."""
    deadline = time.monotonic() + timeout
    while True:
        manager.reconcile_pending()
        if done():
            return
        if time.monotonic() > deadline:
            pytest.fail("controllers did not converge")
        time.sleep(0.005)


def _scale(store, howmany, name="bees"):
    swarm = store.get(Swarm, ObjectKey("default", name))
    swarm.spec.howmany = howmany
    store.update(swarm)


def _flying(store):
    return [d for d in store.list(Drone) if d.status.flying]


@pytest.fixture
def pod_manager(store):
    config = {"controller": {"strategy": "pod-per-node", "backoff": FAST_BACKOFF}}
    manager = Manager(store, config)
    setup_controllers(manager, config)
    return manager


class TestPodPerNodeFleet:
    def test_swarm_fills_every_node(self, store, pod_manager, add_nodes, add_swarm):
        add_nodes("rockpi0", "rockpi1", "rockpi2")
        add_swarm(howmany=3)
        pod_manager.enqueue_all()

        _settle(pod_manager, lambda: len(_flying(store)) == 3)

        nodes = sorted(d.status.node for d in store.list(Drone))
        assert nodes == ["rockpi0", "rockpi1", "rockpi2"]
        assert store.get(Swarm, ObjectKey("default", "bees")).status.flying_drones == 3

    def test_capacity_grounds_extra_drones_until_a_node_joins(
        self, store, pod_manager, add_nodes, add_swarm
    ):
        add_nodes("n0", "n1", "n2")
        add_swarm(howmany=3)
        pod_manager.enqueue_all()
        _settle(pod_manager, lambda: len(_flying(store)) == 3)

        _scale(store, 5)
        _settle(pod_manager, lambda: len(store.list(Drone)) == 5)
        assert len(_flying(store)) == 3
        assert len(store.list(Pod)) == 3

        add_nodes("n3")
        _settle(pod_manager, lambda: len(_flying(store)) == 4)
        assert len({p.spec.node_name for p in store.list(Pod)}) == 4

    def test_scale_down_frees_nodes_for_grounded_drones(
        self, store, pod_manager, add_nodes, add_swarm
    ):
        add_nodes("n0", "n1")
        add_swarm(howmany=4)
        pod_manager.enqueue_all()
        _settle(pod_manager, lambda: len(store.list(Drone)) == 4)

        _scale(store, 1)

        def one_flying_drone():
            drones = store.list(Drone)
            return len(drones) == 1 and drones[0].status.flying

        _settle(pod_manager, one_flying_drone)
        assert len(store.list(Pod)) == 1
        assert store.get(Swarm, ObjectKey("default", "bees")).status.flying_drones == 1

    def test_deleted_pod_is_recreated(self, store, pod_manager, add_nodes, add_drone):
        add_nodes("n0")
        add_drone("solo")
        pod_manager.enqueue_all()
        _settle(pod_manager, lambda: len(_flying(store)) == 1)

        store.delete(store.get(Pod, ObjectKey("default", "solo")))

        _settle(pod_manager, lambda: len(store.list(Pod)) == 1)
        assert store.get(Pod, ObjectKey("default", "solo")).spec.node_name == "n0"

    def test_namespace_filter(self, store, add_nodes, add_swarm):
        config = {"controller": {"namespace": "hive", "backoff": FAST_BACKOFF}}
        manager = Manager(store, config)
        setup_controllers(manager, config)
        add_nodes("n0")
        add_swarm(howmany=2)
        add_swarm(namespace="hive", howmany=1)
        manager.enqueue_all()

        _settle(manager, lambda: len(store.list(Drone, namespace="hive")) == 1)
        assert store.list(Drone, namespace="default") == []


class TestDeploymentFleet:
    def test_drones_share_one_deployment(self, store, add_drone):
        config = {"controller": {"strategy": "deployment", "backoff": FAST_BACKOFF}}
        manager = Manager(store, config)
        setup_controllers(manager, config)
        SimulatedScheduler(store).start()
        add_drone("d1")
        add_drone("d2")
        manager.enqueue_all()

        def both_synced():
            return all(d.status.flying_drones == 1 for d in store.list(Drone))

        _settle(manager, both_synced)
        deployments = store.list(Deployment)
        assert [d.name for d in deployments] == ["mydrones"]
        assert deployments[0].status.replicas == 1

    def test_scaling_declared_count_follows_through(self, store, add_drone):
        config = {"controller": {"strategy": "deployment", "backoff": FAST_BACKOFF}}
        manager = Manager(store, config)
        setup_controllers(manager, config)
        SimulatedScheduler(store).start()
        add_drone("d1", howmany=2)
        manager.enqueue_all()
        _settle(
            manager,
            lambda: store.get(Drone, ObjectKey("default", "d1")).status.flying_drones == 2,
        )

        drone = store.get(Drone, ObjectKey("default", "d1"))
        drone.spec.howmany = 4
        store.update(drone)

        _settle(
            manager,
            lambda: store.get(Drone, ObjectKey("default", "d1")).status.flying_drones == 4,
        )
        assert store.get(Deployment, ObjectKey("default", "mydrones")).spec.replicas == 4


class TestThreadedRun:
    def test_workers_converge_in_background(self, store, add_swarm):
        config = {
            "controller": {"workers": 1, "resync_s": 0.05, "backoff": FAST_BACKOFF},
        }
        manager = Manager(store, config)
        setup_controllers(manager, config)
        for name in ("n0", "n1"):
            store.create(
                Node(metadata=ObjectMeta(name=name, labels={"node-role.kubernetes.io/drone": ""}))
            )
        add_swarm(howmany=2)

        manager.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and len(_flying(store)) < 2:
                time.sleep(0.01)
        finally:
            manager.stop()

        assert len(_flying(store)) == 2
        assert len(store.list(Pod)) == 2

    @pytest.mark.parametrize("workers", [None, 2])
    def test_fleet_lands_on_distinct_nodes(self, store, add_nodes, add_swarm, workers):
        config = copy.deepcopy(DEFAULTS)
        if workers is not None:
            config["controller"]["workers"] = workers
        manager = Manager(store, config)
        setup_controllers(manager, config)
        add_nodes("n0", "n1", "n2", "n3")
        add_swarm(howmany=4)

        def spread():
            pods = store.list(Pod)
            drones = _flying(store)
            return (
                len(drones) == 4
                and len({d.status.node for d in drones}) == 4
                and len(pods) == 4
                and len({p.spec.node_name for p in pods}) == 4
            )

        manager.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and not spread():
                time.sleep(0.01)
        finally:
            manager.stop()

        assert spread()
        assert sorted(p.spec.node_name for p in store.list(Pod)) == ["n0", "n1", "n2", "n3"]
