"""DroneReconciler: converges one Drone's backing workload and its status.

The reconciler itself only knows the common flow::

    fetch Drone ─ gone? ──────────────────────────────▶ done
        │
    garbage-collect owned units not named target_unit_name(drone)
        │
    get target unit ─ absent? ─▶ strategy.create_missing(drone)
        │
    strategy.converge(drone, unit)

What a unit is, how it is built and what "converged" means comes from the
:class:`DroneStrategy` picked at deployment time (``controller.strategy``).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

from dronectl.errors import NotFoundError
from dronectl.manager import (
    Controller,
    EventMapper,
    Manager,
    Reconciler,
    Request,
    Result,
    request_logger,
)
from dronectl.ownership import cleanup_owned_units, register_owner_index
from dronectl.resources import Drone, ObjectKey, Resource
from dronectl.store import Store

logger = logging.getLogger("DroneCtl.Drone")

DEFAULT_IMAGE = "danacr/drone-pod:latest"
CONTAINER_NAME = "drone-pod"
DRONE_LABEL = "experiments.mad.md/drone"


class DroneStrategy(ABC):
    """How a Drone is backed by a workload unit.

    Subclasses set ``name`` and ``unit_kind`` and implement the four hooks.
    """

    name: str = "base"
    unit_kind: Type[Resource] = Resource

    def __init__(self, store: Store, config: Optional[Dict[str, Any]] = None) -> None:
        self.store = store
        self.config: Dict[str, Any] = config or {}
        drone_cfg = self.config.get("drone", {})
        self.image: str = drone_cfg.get("image", DEFAULT_IMAGE)
        self.namespace: str = self.config.get("controller", {}).get("namespace", "") or ""

    @abstractmethod
    def target_unit_name(self, drone: Drone) -> str:
        """Name of the one unit this Drone should own."""

    @abstractmethod
    def build_unit(self, drone: Drone, **kwargs: Any) -> Resource:
        """Build (but do not create) the unit for *drone*."""

    @abstractmethod
    def create_missing(self, drone: Drone, log: logging.LoggerAdapter) -> Result:
        """Called when the target unit does not exist yet."""

    @abstractmethod
    def converge(self, drone: Drone, unit: Resource, log: logging.LoggerAdapter) -> Result:
        """Called with the existing target unit."""

    def watches(self) -> List[Tuple[Type[Resource], EventMapper]]:
        """Extra event sources that should wake Drones up."""
        return []


class DroneReconciler(Reconciler):
    def __init__(self, store: Store, strategy: DroneStrategy, workers: int = 1) -> None:
        self.store = store
        self.strategy = strategy
        self.workers = workers

    def reconcile(self, request: Request) -> Result:
        log = request_logger(logger, "Drone", request)
        unit_kind = self.strategy.unit_kind

        log.debug("fetching Drone resource")
        try:
            drone = self.store.get(Drone, request.key)
        except NotFoundError:
            log.debug("Drone not found, it must have been deleted")
            return Result()

        target = self.strategy.target_unit_name(drone)
        cleanup_owned_units(self.store, drone, unit_kind, keep=lambda unit: unit.name == target)

        log.debug(f"checking if an existing {unit_kind.kind} exists for this resource")
        try:
            unit = self.store.get(unit_kind, ObjectKey(drone.namespace, target))
        except NotFoundError:
            log.info(f"could not find existing {unit_kind.kind} for Drone, creating one...")
            return self.strategy.create_missing(drone, log)

        return self.strategy.converge(drone, unit, log)

    def setup(self, manager: Manager) -> Controller:
        """Register the owner index and the controller with *manager*."""
        register_owner_index(self.store, self.strategy.unit_kind, Drone.kind)
        controller = Controller(
            "drone",
            Drone,
            self,
            owns=[self.strategy.unit_kind],
            watches=self.strategy.watches(),
            workers=self.workers,
            rate_limiter=manager.new_rate_limiter(),
        )
        manager.add(controller)
        return controller
