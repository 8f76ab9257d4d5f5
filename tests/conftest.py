"""Shared fixtures for the dronectl test suite."""

import pytest

from dronectl.resources import Drone, DroneSpec, Node, ObjectMeta, Swarm, SwarmSpec
from dronectl.store import InMemoryStore

ROLE_LABEL = "node-role.kubernetes.io/drone"


class RecordingStore(InMemoryStore):
    """InMemoryStore that records every write call as ``(verb, kind, name)``."""

    def __init__(self):
        super().__init__()
        self.writes = []

    def create(self, obj):
        self.writes.append(("create", obj.kind, obj.name))
        return super().create(obj)

    def update(self, obj):
        self.writes.append(("update", obj.kind, obj.name))
        return super().update(obj)

    def update_status(self, obj):
        self.writes.append(("update_status", obj.kind, obj.name))
        return super().update_status(obj)

    def delete(self, obj):
        self.writes.append(("delete", obj.kind, obj.name))
        return super().delete(obj)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def add_nodes(store):
    """Create nodes by name; ``drone_capable=False`` leaves off the role label."""

    def _add(*names, drone_capable=True):
        labels = {ROLE_LABEL: ""} if drone_capable else {"kubernetes.io/os": "linux"}
        return [
            store.create(Node(metadata=ObjectMeta(name=n, labels=dict(labels)))) for n in names
        ]

    return _add


@pytest.fixture
def add_drone(store):
    def _add(name, namespace="default", howmany=None, swarm=None):
        return store.create(
            Drone(
                metadata=ObjectMeta(name=name, namespace=namespace),
                spec=DroneSpec(howmany=howmany, swarm=swarm),
            )
        )

    return _add


@pytest.fixture
def add_swarm(store):
    def _add(name="bees", namespace="default", howmany=None):
        return store.create(
            Swarm(metadata=ObjectMeta(name=name, namespace=namespace), spec=SwarmSpec(howmany))
        )

    return _add
