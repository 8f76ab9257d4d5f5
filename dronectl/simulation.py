"""Simulated scheduler for running dronectl without a cluster.

Plays the part of the external process scheduler: a pod bound to a node
starts ``Running`` as soon as it appears, and a deployment's observed
replica count follows its declared count. Hooked onto the store as a
watcher, so its writes produce events exactly like a real scheduler's.

    store = InMemoryStore()
    sim = SimulatedScheduler(store)
    sim.start()
"""

from __future__ import annotations

import logging
from typing import Optional

from dronectl.errors import StoreError
from dronectl.resources import POD_PENDING, POD_RUNNING, Deployment, Pod
from dronectl.store import DELETED, Store, WatchEvent

logger = logging.getLogger("DroneCtl.Simulation")


class SimulatedScheduler:
    """Moves pods to Running and deployments to their declared replica count."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self._watch_id: Optional[str] = None

    def start(self) -> None:
        if self._watch_id is None:
            self._watch_id = self.store.watch(self.on_event)
            logger.info("Simulated scheduler attached")

    def stop(self) -> None:
        if self._watch_id is not None:
            self.store.unwatch(self._watch_id)
            self._watch_id = None

    def on_event(self, event: WatchEvent) -> None:
        if event.type == DELETED:
            return
        try:
            if isinstance(event.obj, Pod):
                self._schedule_pod(event.obj)
            elif isinstance(event.obj, Deployment):
                self._scale_deployment(event.obj)
        except StoreError as exc:
            # Stale event; the newer one will be handled on its own.
            logger.debug(f"Simulation skipped {event.kind} {event.obj.key}: {exc}")

    def _schedule_pod(self, pod: Pod) -> None:
        if pod.status.phase != POD_PENDING or not pod.spec.node_name:
            return
        pod.status.phase = POD_RUNNING
        self.store.update_status(pod)
        logger.debug(f"Pod {pod.key} on {pod.spec.node_name}: {pod.status.phase}")

    def _scale_deployment(self, deployment: Deployment) -> None:
        if deployment.status.replicas == deployment.spec.replicas:
            return
        deployment.status.replicas = deployment.spec.replicas
        self.store.update_status(deployment)
        logger.debug(f"Deployment {deployment.key} now has {deployment.status.replicas} replica(s)")
