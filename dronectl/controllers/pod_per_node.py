"""Pod-per-node strategy: every Drone is one pod pinned to its own node.

States of a Drone under this strategy:

- Unscheduled: no pod yet. Placement picks a free node, the pod is created
  and the Drone is marked flying on that node.
- Flying: the pod named after the Drone exists. Status is rewritten only if
  it does not already say so, which also repairs a pass that created the pod
  but died before recording it.
- Grounded: every eligible node is taken. ``status.flying`` is False and
  nothing is created; Node changes and pod deletions wake grounded Drones.

A pod whose process ended in ``Failed`` is deleted so the next pass places
it again instead of waiting for someone to reschedule it by hand. When two
Drones were bound to the same node at once, the newer pod is deleted the
same way.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple, Type

from dronectl.controllers.drone import CONTAINER_NAME, DRONE_LABEL, DroneStrategy
from dronectl.errors import StoreError, ignore_not_found
from dronectl.manager import EventMapper, Request, Result
from dronectl.placement import (
    DEFAULT_ROLE_LABEL,
    eligible_machines,
    occupied_machine_names,
    select_free_machine,
)
from dronectl.resources import (
    POD_FAILED,
    TERMINAL_PHASES,
    Container,
    Drone,
    Node,
    ObjectMeta,
    Pod,
    PodSpec,
    Resource,
    new_controller_ref,
)
from dronectl.store import DELETED, WatchEvent


class PodPerNodeStrategy(DroneStrategy):
    name = "pod-per-node"
    unit_kind = Pod

    def __init__(self, store, config=None) -> None:
        super().__init__(store, config)
        self.role_label: str = self.config.get("drone", {}).get(
            "node_role_label", DEFAULT_ROLE_LABEL
        )

    def target_unit_name(self, drone: Drone) -> str:
        return drone.name

    def build_unit(self, drone: Drone, node: Optional[Node] = None, **kwargs: Any) -> Pod:
        if node is None:
            raise ValueError("pod-per-node units must be bound to a node")
        return Pod(
            metadata=ObjectMeta(
                name=drone.name,
                namespace=drone.namespace,
                labels={DRONE_LABEL: drone.name},
                owner_references=[new_controller_ref(drone)],
            ),
            spec=PodSpec(
                node_name=node.name,
                containers=[
                    Container(name=CONTAINER_NAME, image=self.image, env={"NODE": node.name})
                ],
            ),
        )

    def create_missing(self, drone: Drone, log: logging.LoggerAdapter) -> Result:
        eligible = eligible_machines(self.store.list(Node), self.role_label)
        occupied = occupied_machine_names(self.store.list(Pod, namespace=drone.namespace))
        node = select_free_machine(eligible, occupied)

        if node is None:
            log.info(
                f"no free node: {len(eligible)} eligible, all occupied; Drone stays grounded"
            )
            self._record(drone, flying=False, node=None, log=log)
            return Result()

        self.store.create(self.build_unit(drone, node=node))
        log.info(f"created Pod on node {node.name}")
        self._record(drone, flying=True, node=node.name, log=log)
        return Result()

    def converge(self, drone: Drone, unit: Resource, log: logging.LoggerAdapter) -> Result:
        pod = unit
        if pod.status.phase == POD_FAILED:
            log.info(f"Pod on node {pod.spec.node_name} failed, deleting it for rescheduling")
            try:
                self.store.delete(pod)
            except StoreError as exc:
                ignore_not_found(exc)
            return Result()

        rival = self._earlier_pod_on_node(pod)
        if rival is not None:
            log.info(
                f"node {pod.spec.node_name} is already held by Pod {rival.name}, "
                "releasing it for rescheduling"
            )
            try:
                self.store.delete(pod)
            except StoreError as exc:
                ignore_not_found(exc)
            return Result()

        self._record(drone, flying=True, node=pod.spec.node_name, log=log)
        return Result()

    def _earlier_pod_on_node(self, pod: Pod) -> Optional[Pod]:
        """Return a pod created before *pod* on the same node, if any.

        Two Drones placed at the same instant can both bind to one node. The
        older pod (ties broken by name) keeps it, so both sides agree on who
        leaves.
        """
        if not pod.spec.node_name:
            return None

        def order(p: Pod):
            return (p.metadata.creation_timestamp or 0.0, p.name)

        for other in self.store.list(Pod, namespace=pod.namespace):
            if other.name == pod.name or other.spec.node_name != pod.spec.node_name:
                continue
            if other.status.phase in TERMINAL_PHASES:
                continue
            if order(other) < order(pod):
                return other
        return None

    def _record(
        self, drone: Drone, flying: bool, node: Optional[str], log: logging.LoggerAdapter
    ) -> None:
        if drone.status.flying == flying and drone.status.node == node:
            return
        drone.status.flying = flying
        drone.status.node = node
        self.store.update_status(drone)
        log.info(f"status updated: flying={flying} node={node}")

    # ------------------------------------------------------------------
    # Wake-ups for grounded Drones
    # ------------------------------------------------------------------

    def watches(self) -> List[Tuple[Type[Resource], EventMapper]]:
        return [(Node, self._on_node_event), (Pod, self._on_pod_event)]

    def _grounded(self, namespace: Optional[str]) -> List[Request]:
        return [
            Request(d.namespace, d.name)
            for d in self.store.list(Drone, namespace=namespace)
            if not d.status.flying
        ]

    def _on_node_event(self, event: WatchEvent) -> List[Request]:
        return self._grounded(self.namespace or None)

    def _on_pod_event(self, event: WatchEvent) -> List[Request]:
        if event.type != DELETED:
            return []
        return self._grounded(event.obj.namespace)
