"""Deployment strategy: the Drones of a namespace share one replicated set.

Each pass performs at most one write, in this order of precedence:

1. create the canonical deployment (replicas = ``spec.howmany``, default 1);
2. fix its declared replica count;
3. copy its observed replica count into ``status.flyingdrones``.

The write itself produces the event that triggers the next step. Every Drone
in the namespace steers the same deployment, so Drones that disagree on
``howmany`` keep overwriting each other's replica count.
"""

from __future__ import annotations

import logging
from typing import Any

from dronectl.controllers.drone import CONTAINER_NAME, DroneStrategy
from dronectl.manager import Result
from dronectl.resources import (
    Container,
    Deployment,
    DeploymentSpec,
    Drone,
    ObjectMeta,
    PodTemplate,
    Resource,
    new_controller_ref,
)

DEFAULT_DEPLOYMENT_NAME = "mydrones"
DEPLOYMENT_LABEL = "experiments.mad.md/deployment-name"


class DeploymentStrategy(DroneStrategy):
    name = "deployment"
    unit_kind = Deployment

    def __init__(self, store, config=None) -> None:
        super().__init__(store, config)
        self.deployment_name: str = self.config.get("drone", {}).get(
            "deployment_name", DEFAULT_DEPLOYMENT_NAME
        )

    def target_unit_name(self, drone: Drone) -> str:
        return self.deployment_name

    def build_unit(self, drone: Drone, **kwargs: Any) -> Deployment:
        labels = {DEPLOYMENT_LABEL: self.deployment_name}
        return Deployment(
            metadata=ObjectMeta(
                name=self.deployment_name,
                namespace=drone.namespace,
                owner_references=[new_controller_ref(drone)],
            ),
            spec=DeploymentSpec(
                replicas=drone.desired_replicas,
                selector=dict(labels),
                template=PodTemplate(
                    labels=dict(labels),
                    containers=[Container(name=CONTAINER_NAME, image=self.image)],
                ),
            ),
        )

    def create_missing(self, drone: Drone, log: logging.LoggerAdapter) -> Result:
        deployment = self.build_unit(drone)
        self.store.create(deployment)
        log.info(f"created Deployment {deployment.name} with {deployment.spec.replicas} replica(s)")
        return Result()

    def converge(self, drone: Drone, unit: Resource, log: logging.LoggerAdapter) -> Result:
        deployment = unit
        expected = drone.desired_replicas
        if deployment.spec.replicas != expected:
            log.info(
                f"updating replica count: old_count={deployment.spec.replicas} "
                f"new_count={expected}"
            )
            deployment.spec.replicas = expected
            self.store.update(deployment)
            return Result()

        log.debug(f"replica count up to date: replica_count={expected}")
        if drone.status.flying_drones != deployment.status.replicas:
            drone.status.flying_drones = deployment.status.replicas
            self.store.update_status(drone)
            log.info(f"resource status synced: flyingdrones={drone.status.flying_drones}")
        return Result()
