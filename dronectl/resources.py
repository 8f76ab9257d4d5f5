"""Declarative records handled by dronectl.

Two custom kinds (``Swarm`` and ``Drone``) live in the
``experiments.mad.md/v1`` group. The workload units a Drone owns are plain
``Pod`` (one process pinned to one node) and ``Deployment`` (a replicated
set) records, and ``Node`` is the read-only machine inventory.

Every record round-trips through ``to_dict`` / ``from_dict`` using the wire
field names of the stored schema (``spec.howmany``, ``status.flyingdrones``,
``status.flying``), so manifests and gateway responses look the same.

Manifest format (multi-document YAML)::

    apiVersion: experiments.mad.md/v1
    kind: Swarm
    metadata:
      name: bees
      namespace: default
    spec:
      howmany: 3
    ---
    apiVersion: v1
    kind: Node
    metadata:
      name: rockpi0
      labels:
        node-role.kubernetes.io/drone: ""
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional

import yaml

GROUP_VERSION = "experiments.mad.md/v1"
APPS_VERSION = "apps/v1"
CORE_VERSION = "v1"

POD_PENDING = "Pending"
POD_RUNNING = "Running"
POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"
TERMINAL_PHASES = frozenset({POD_SUCCEEDED, POD_FAILED})


class ObjectKey(NamedTuple):
    """Namespaced identity of a record. Cluster-scoped records use ``""``."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass
class OwnerReference:
    """Queryable parent link stored on an owned record."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True

    def to_dict(self) -> dict:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
        }

    @classmethod
    def from_dict(cls, d: dict) -> OwnerReference:
        return cls(
            api_version=d["apiVersion"],
            kind=d["kind"],
            name=d["name"],
            uid=d.get("uid", ""),
            controller=bool(d.get("controller", False)),
        )


@dataclass
class ObjectMeta:
    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)
    creation_timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        d: Dict[str, Any] = {"name": self.name}
        if self.namespace:
            d["namespace"] = self.namespace
        if self.uid:
            d["uid"] = self.uid
        if self.resource_version:
            d["resourceVersion"] = self.resource_version
        if self.labels:
            d["labels"] = dict(self.labels)
        if self.owner_references:
            d["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        if self.creation_timestamp is not None:
            d["creationTimestamp"] = self.creation_timestamp
        return d

    @classmethod
    def from_dict(cls, d: dict) -> ObjectMeta:
        return cls(
            name=d["name"],
            namespace=d.get("namespace", ""),
            uid=d.get("uid", ""),
            resource_version=str(d.get("resourceVersion", "")),
            labels=dict(d.get("labels") or {}),
            owner_references=[
                OwnerReference.from_dict(ref) for ref in d.get("ownerReferences") or []
            ],
            creation_timestamp=d.get("creationTimestamp"),
        )


class Resource:
    """Behaviour shared by every record type.

    Subclasses are dataclasses whose first field is ``metadata``.
    """

    kind: ClassVar[str] = ""
    api_version: ClassVar[str] = ""
    namespaced: ClassVar[bool] = True

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    def to_dict(self) -> dict:
        d = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
        }
        d.update(self._body_to_dict())
        return d

    def _body_to_dict(self) -> dict:
        return {}


# ---------------------------------------------------------------------------
# Swarm
# ---------------------------------------------------------------------------


@dataclass
class SwarmSpec:
    howmany: Optional[int] = None


@dataclass
class SwarmStatus:
    flying_drones: int = 0


@dataclass
class Swarm(Resource):
    """Desired fleet size for the Drones of one namespace."""

    kind: ClassVar[str] = "Swarm"
    api_version: ClassVar[str] = GROUP_VERSION

    metadata: ObjectMeta
    spec: SwarmSpec = field(default_factory=SwarmSpec)
    status: SwarmStatus = field(default_factory=SwarmStatus)

    def _body_to_dict(self) -> dict:
        spec = {} if self.spec.howmany is None else {"howmany": self.spec.howmany}
        return {"spec": spec, "status": {"flyingdrones": self.status.flying_drones}}

    @classmethod
    def from_dict(cls, d: dict) -> Swarm:
        spec = d.get("spec") or {}
        status = d.get("status") or {}
        howmany = spec.get("howmany")
        return cls(
            metadata=ObjectMeta.from_dict(d["metadata"]),
            spec=SwarmSpec(howmany=None if howmany is None else int(howmany)),
            status=SwarmStatus(flying_drones=int(status.get("flyingdrones", 0))),
        )


# ---------------------------------------------------------------------------
# Drone
# ---------------------------------------------------------------------------


@dataclass
class DroneSpec:
    howmany: Optional[int] = None  # deployment strategy only
    swarm: Optional[str] = None  # back-reference, lookup only


@dataclass
class DroneStatus:
    flying: bool = False  # pod-per-node strategy
    flying_drones: int = 0  # deployment strategy
    node: Optional[str] = None


@dataclass
class Drone(Resource):
    """One worker unit and, through its owned workload, its process."""

    kind: ClassVar[str] = "Drone"
    api_version: ClassVar[str] = GROUP_VERSION

    metadata: ObjectMeta
    spec: DroneSpec = field(default_factory=DroneSpec)
    status: DroneStatus = field(default_factory=DroneStatus)

    @property
    def owner_swarm(self) -> Optional[str]:
        return self.spec.swarm

    @property
    def desired_replicas(self) -> int:
        return 1 if self.spec.howmany is None else self.spec.howmany

    def _body_to_dict(self) -> dict:
        spec: Dict[str, Any] = {}
        if self.spec.howmany is not None:
            spec["howmany"] = self.spec.howmany
        if self.spec.swarm:
            spec["swarm"] = self.spec.swarm
        status: Dict[str, Any] = {
            "flying": self.status.flying,
            "flyingdrones": self.status.flying_drones,
        }
        if self.status.node:
            status["node"] = self.status.node
        return {"spec": spec, "status": status}

    @classmethod
    def from_dict(cls, d: dict) -> Drone:
        spec = d.get("spec") or {}
        status = d.get("status") or {}
        howmany = spec.get("howmany")
        return cls(
            metadata=ObjectMeta.from_dict(d["metadata"]),
            spec=DroneSpec(
                howmany=None if howmany is None else int(howmany),
                swarm=spec.get("swarm"),
            ),
            status=DroneStatus(
                flying=bool(status.get("flying", False)),
                flying_drones=int(status.get("flyingdrones", 0)),
                node=status.get("node"),
            ),
        )


# ---------------------------------------------------------------------------
# Workload units
# ---------------------------------------------------------------------------


@dataclass
class Container:
    name: str
    image: str
    env: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "image": self.image,
            "env": [{"name": k, "value": v} for k, v in self.env.items()],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Container:
        return cls(
            name=d["name"],
            image=d.get("image", ""),
            env={e["name"]: str(e.get("value", "")) for e in d.get("env") or []},
        )


@dataclass
class PodSpec:
    node_name: Optional[str] = None
    containers: List[Container] = field(default_factory=list)


@dataclass
class PodStatus:
    phase: str = POD_PENDING


@dataclass
class Pod(Resource):
    """A single scheduled process bound to one named node."""

    kind: ClassVar[str] = "Pod"
    api_version: ClassVar[str] = CORE_VERSION

    metadata: ObjectMeta
    spec: PodSpec = field(default_factory=PodSpec)
    status: PodStatus = field(default_factory=PodStatus)

    def _body_to_dict(self) -> dict:
        spec: Dict[str, Any] = {"containers": [c.to_dict() for c in self.spec.containers]}
        if self.spec.node_name:
            spec["nodeName"] = self.spec.node_name
        return {"spec": spec, "status": {"phase": self.status.phase}}

    @classmethod
    def from_dict(cls, d: dict) -> Pod:
        spec = d.get("spec") or {}
        status = d.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(d["metadata"]),
            spec=PodSpec(
                node_name=spec.get("nodeName"),
                containers=[Container.from_dict(c) for c in spec.get("containers") or []],
            ),
            status=PodStatus(phase=status.get("phase", POD_PENDING)),
        )


@dataclass
class PodTemplate:
    labels: Dict[str, str] = field(default_factory=dict)
    containers: List[Container] = field(default_factory=list)


@dataclass
class DeploymentSpec:
    replicas: int = 1
    selector: Dict[str, str] = field(default_factory=dict)
    template: PodTemplate = field(default_factory=PodTemplate)


@dataclass
class DeploymentStatus:
    replicas: int = 0


@dataclass
class Deployment(Resource):
    """A replicated workload set with a declared replica count."""

    kind: ClassVar[str] = "Deployment"
    api_version: ClassVar[str] = APPS_VERSION

    metadata: ObjectMeta
    spec: DeploymentSpec = field(default_factory=DeploymentSpec)
    status: DeploymentStatus = field(default_factory=DeploymentStatus)

    def _body_to_dict(self) -> dict:
        return {
            "spec": {
                "replicas": self.spec.replicas,
                "selector": {"matchLabels": dict(self.spec.selector)},
                "template": {
                    "metadata": {"labels": dict(self.spec.template.labels)},
                    "spec": {
                        "containers": [c.to_dict() for c in self.spec.template.containers]
                    },
                },
            },
            "status": {"replicas": self.status.replicas},
        }

    @classmethod
    def from_dict(cls, d: dict) -> Deployment:
        spec = d.get("spec") or {}
        template = spec.get("template") or {}
        status = d.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(d["metadata"]),
            spec=DeploymentSpec(
                replicas=int(spec.get("replicas", 1)),
                selector=dict((spec.get("selector") or {}).get("matchLabels") or {}),
                template=PodTemplate(
                    labels=dict((template.get("metadata") or {}).get("labels") or {}),
                    containers=[
                        Container.from_dict(c)
                        for c in (template.get("spec") or {}).get("containers") or []
                    ],
                ),
            ),
            status=DeploymentStatus(replicas=int(status.get("replicas", 0))),
        )


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------


@dataclass
class Node(Resource):
    """A machine from the cluster inventory. Never written by dronectl."""

    kind: ClassVar[str] = "Node"
    api_version: ClassVar[str] = CORE_VERSION
    namespaced: ClassVar[bool] = False

    metadata: ObjectMeta

    @classmethod
    def from_dict(cls, d: dict) -> Node:
        return cls(metadata=ObjectMeta.from_dict(d["metadata"]))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

RESOURCE_KINDS = {cls.kind: cls for cls in (Swarm, Drone, Pod, Deployment, Node)}


def new_controller_ref(owner: Resource) -> OwnerReference:
    """Build the owner reference that marks *owner* as the managing controller."""
    return OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.metadata.uid,
        controller=True,
    )


def get_controller_of(obj: Resource) -> Optional[OwnerReference]:
    for ref in obj.metadata.owner_references:
        if ref.controller:
            return ref
    return None


def resource_from_dict(d: dict) -> Resource:
    """Parse a record dict, dispatching on its ``kind``."""
    kind = d.get("kind")
    cls = RESOURCE_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown kind {kind!r}. Known kinds: {sorted(RESOURCE_KINDS)}")
    obj = cls.from_dict(d)
    if not cls.namespaced:
        obj.metadata.namespace = ""
    elif not obj.metadata.namespace:
        obj.metadata.namespace = "default"
    return obj


def load_manifest(path: str) -> List[Resource]:
    """Read every record from a multi-document YAML manifest."""
    with open(Path(path)) as fh:
        docs = [d for d in yaml.safe_load_all(fh) if d]
    return [resource_from_dict(d) for d in docs]


def age_s(obj: Resource) -> float:
    """Seconds since *obj* was created, 0.0 if it was never stored."""
    if obj.metadata.creation_timestamp is None:
        return 0.0
    return max(0.0, time.time() - obj.metadata.creation_timestamp)
