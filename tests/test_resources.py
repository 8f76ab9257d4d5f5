"""Tests for dronectl.resources -- record types, wire names and manifests."""

import pytest

from dronectl.resources import (
    GROUP_VERSION,
    POD_PENDING,
    Container,
    Deployment,
    Drone,
    Node,
    ObjectMeta,
    Pod,
    Swarm,
    age_s,
    get_controller_of,
    load_manifest,
    new_controller_ref,
    resource_from_dict,
)

MANIFEST = """\
apiVersion: experiments.mad.md/v1
kind: Swarm
metadata:
  name: bees
spec:
  howmany: 3
---
apiVersion: experiments.mad.md/v1
kind: Drone
metadata:
  name: worker-bee
  namespace: hive
spec:
  howmany: 2
  swarm: bees
---
apiVersion: v1
kind: Node
metadata:
  name: rockpi0
  namespace: ignored
  labels:
    node-role.kubernetes.io/drone: ""
---
"""


class TestWireNames:
    def test_swarm(self):
        swarm = Swarm.from_dict(
            {"metadata": {"name": "bees"}, "spec": {"howmany": 4}, "status": {"flyingdrones": 2}}
        )
        assert swarm.spec.howmany == 4
        assert swarm.status.flying_drones == 2
        d = swarm.to_dict()
        assert d["apiVersion"] == GROUP_VERSION
        assert d["spec"] == {"howmany": 4}
        assert d["status"] == {"flyingdrones": 2}

    def test_swarm_without_howmany(self):
        swarm = Swarm.from_dict({"metadata": {"name": "bees"}})
        assert swarm.spec.howmany is None
        assert swarm.to_dict()["spec"] == {}

    def test_drone(self):
        drone = Drone.from_dict(
            {
                "metadata": {"name": "d"},
                "spec": {"swarm": "bees"},
                "status": {"flying": True, "node": "rockpi0"},
            }
        )
        assert drone.owner_swarm == "bees"
        assert drone.status.flying is True
        d = drone.to_dict()
        assert d["status"] == {"flying": True, "flyingdrones": 0, "node": "rockpi0"}
        assert d["spec"] == {"swarm": "bees"}

    def test_drone_desired_replicas_defaults_to_one(self):
        assert Drone(metadata=ObjectMeta("d")).desired_replicas == 1
        assert Drone.from_dict({"metadata": {"name": "d"}, "spec": {"howmany": 0}}).desired_replicas == 0

    def test_pod(self):
        pod = Pod.from_dict(
            {
                "metadata": {"name": "p"},
                "spec": {
                    "nodeName": "n0",
                    "containers": [
                        {"name": "c", "image": "img", "env": [{"name": "NODE", "value": "n0"}]}
                    ],
                },
            }
        )
        assert pod.spec.node_name == "n0"
        assert pod.spec.containers[0].env == {"NODE": "n0"}
        assert pod.status.phase == POD_PENDING
        assert pod.to_dict()["spec"]["nodeName"] == "n0"

    def test_deployment(self):
        dep = Deployment.from_dict(
            {
                "metadata": {"name": "mydrones"},
                "spec": {
                    "replicas": 3,
                    "selector": {"matchLabels": {"app": "x"}},
                    "template": {
                        "metadata": {"labels": {"app": "x"}},
                        "spec": {"containers": [{"name": "c", "image": "img"}]},
                    },
                },
                "status": {"replicas": 2},
            }
        )
        assert dep.spec.replicas == 3
        assert dep.spec.selector == {"app": "x"}
        assert dep.spec.template.containers == [Container("c", "img")]
        assert dep.to_dict()["status"] == {"replicas": 2}

    def test_metadata_owner_refs(self):
        owner = Drone(metadata=ObjectMeta("d", "default", uid="u1"))
        meta = ObjectMeta("p", "default", owner_references=[new_controller_ref(owner)])
        again = ObjectMeta.from_dict(meta.to_dict())
        assert again.owner_references == meta.owner_references
        assert meta.to_dict()["ownerReferences"][0]["controller"] is True


class TestControllerRef:
    def test_new_controller_ref(self):
        owner = Drone(metadata=ObjectMeta("d", "default", uid="u1"))
        ref = new_controller_ref(owner)
        assert (ref.api_version, ref.kind, ref.name, ref.uid) == (GROUP_VERSION, "Drone", "d", "u1")
        assert ref.controller is True

    def test_get_controller_of(self):
        owner = Drone(metadata=ObjectMeta("d", "default", uid="u1"))
        pod = Pod(metadata=ObjectMeta("p", "default", owner_references=[new_controller_ref(owner)]))
        assert get_controller_of(pod).name == "d"
        assert get_controller_of(Pod(metadata=ObjectMeta("q"))) is None


class TestResourceFromDict:
    def test_dispatches_on_kind(self):
        obj = resource_from_dict({"kind": "Swarm", "metadata": {"name": "s"}})
        assert isinstance(obj, Swarm)

    def test_defaults_namespace(self):
        obj = resource_from_dict({"kind": "Drone", "metadata": {"name": "d"}})
        assert obj.namespace == "default"

    def test_cluster_scoped_has_no_namespace(self):
        obj = resource_from_dict({"kind": "Node", "metadata": {"name": "n", "namespace": "x"}})
        assert obj.namespace == ""

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown kind"):
            resource_from_dict({"kind": "DaemonSet", "metadata": {"name": "x"}})


class TestLoadManifest:
    def test_reads_every_document(self, tmp_path):
        path = tmp_path / "cluster.yaml"
        path.write_text(MANIFEST)
        objs = load_manifest(str(path))
        assert [type(o) for o in objs] == [Swarm, Drone, Node]
        swarm, drone, node = objs
        assert swarm.key == ("default", "bees")
        assert drone.key == ("hive", "worker-bee")
        assert drone.spec.howmany == 2
        assert node.metadata.labels == {"node-role.kubernetes.io/drone": ""}
        assert node.namespace == ""


class TestAge:
    def test_unstored(self):
        assert age_s(Drone(metadata=ObjectMeta("d"))) == 0.0

    def test_stored(self, store, add_drone):
        assert age_s(add_drone("d")) >= 0.0
