"""SwarmReconciler: keeps the number of Drones at the Swarm's ``howmany``.

One pass creates at most one Drone or deletes at most one Drone, then
publishes the observed count. The resulting Drone event re-triggers the
Swarm, so a fleet grows or shrinks one Drone per pass until it matches.

Scale-down removes the first Drone in listing order. There is no age,
health or placement weighting.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional

from dronectl.errors import NotFoundError
from dronectl.manager import (
    Controller,
    Manager,
    Reconciler,
    Request,
    Result,
    request_logger,
)
from dronectl.names import generate_name
from dronectl.resources import Drone, DroneSpec, ObjectMeta, Swarm
from dronectl.store import MODIFIED, Store, WatchEvent

logger = logging.getLogger("DroneCtl.Swarm")

SWARM_LABEL = "experiments.mad.md/swarm"


class SwarmReconciler(Reconciler):
    def __init__(
        self,
        store: Store,
        config: Optional[Dict[str, Any]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.config = config or {}
        self.workers = int(self.config.get("controller", {}).get("workers", 1))
        self._rng = rng

    def reconcile(self, request: Request) -> Result:
        log = request_logger(logger, "Swarm", request)

        log.debug("fetching swarm resource")
        try:
            swarm = self.store.get(Swarm, request.key)
        except NotFoundError:
            log.debug("Swarm not found, it must have been deleted")
            return Result()

        drones = self.store.list(Drone, namespace=swarm.namespace)
        desired = swarm.spec.howmany

        if desired is None:
            log.info("spec.howmany is unset, not scaling")
        elif desired < 0:
            log.warning(f"spec.howmany={desired} is negative, not scaling")
        elif len(drones) < desired:
            log.info(f"Not enough drones ({len(drones)}/{desired}), creating one")
            self._create_drone(swarm, drones, log)
        elif len(drones) > desired:
            victim = drones[0]
            log.info(f"Too many drones ({len(drones)}/{desired}), deleting {victim.name}")
            try:
                self.store.delete(victim)
            except NotFoundError:
                log.debug(f"Drone {victim.name} was already gone")

        observed = len(self.store.list(Drone, namespace=swarm.namespace))
        if swarm.status.flying_drones != observed:
            swarm.status.flying_drones = observed
            self.store.update_status(swarm)
            log.info(f"updated swarm status: flyingdrones={observed}")
        return Result()

    def _create_drone(self, swarm: Swarm, drones: List[Drone], log) -> Drone:
        name = generate_name({d.name for d in drones}, self._rng)
        drone = Drone(
            metadata=ObjectMeta(
                name=name,
                namespace=swarm.namespace,
                labels={SWARM_LABEL: swarm.name},
            ),
            spec=DroneSpec(swarm=swarm.name),
        )
        created = self.store.create(drone)
        log.info(f"created drone {name}")
        return created

    def _swarms_for_drone(self, event: WatchEvent) -> List[Request]:
        # Only creation and deletion change a Swarm's count.
        if event.type == MODIFIED:
            return []
        return [
            Request(s.namespace, s.name)
            for s in self.store.list(Swarm, namespace=event.obj.namespace)
        ]

    def setup(self, manager: Manager) -> Controller:
        controller = Controller(
            "swarm",
            Swarm,
            self,
            watches=[(Drone, self._swarms_for_drone)],
            workers=self.workers,
            rate_limiter=manager.new_rate_limiter(),
        )
        manager.add(controller)
        return controller
