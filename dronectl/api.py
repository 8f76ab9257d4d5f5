"""dronectl status gateway.

A small FastAPI app over a :class:`~dronectl.store.Store`: read the fleet's
declared and observed state, and change a Swarm's desired size the way any
external actor would (an optimistic update of ``spec.howmany``).

Endpoints::

    GET  /health
    GET  /swarms
    GET  /swarms/{namespace}/{name}
    PUT  /swarms/{namespace}/{name}/scale   {"howmany": 5}
    GET  /drones[?namespace=...]
    GET  /nodes
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI
from pydantic import BaseModel

from dronectl import __version__
from dronectl.api_errors import DroneCtlAPIError, register_error_handlers
from dronectl.manager import Manager
from dronectl.resources import Drone, Node, ObjectKey, Pod, Swarm, age_s
from dronectl.store import Store

logger = logging.getLogger("DroneCtl.Gateway")


class ScaleRequest(BaseModel):
    howmany: int


def swarm_summary(store: Store, swarm: Swarm) -> dict:
    drones = store.list(Drone, namespace=swarm.namespace)
    d = swarm.to_dict()
    d["drones"] = [drone.name for drone in drones if drone.owner_swarm == swarm.name]
    return d


def drone_summary(drone: Drone) -> dict:
    d = drone.to_dict()
    d["age_s"] = round(age_s(drone), 1)
    return d


def create_app(store: Store, manager: Optional[Manager] = None) -> FastAPI:
    """Build the gateway app bound to *store* (and optionally *manager*)."""
    app = FastAPI(
        title="dronectl Gateway",
        description="Fleet status and scaling for dronectl swarms.",
        version=__version__,
    )
    register_error_handlers(app)
    started = time.time()

    @app.get("/health")
    def health():
        queues = {}
        if manager is not None:
            queues = {c.name: len(c.queue) for c in manager.controllers}
        return {
            "status": "ok",
            "version": __version__,
            "uptime_s": round(time.time() - started, 1),
            "queues": queues,
        }

    @app.get("/swarms")
    def list_swarms(namespace: Optional[str] = None):
        return [swarm_summary(store, s) for s in store.list(Swarm, namespace=namespace)]

    @app.get("/swarms/{namespace}/{name}")
    def get_swarm(namespace: str, name: str):
        return swarm_summary(store, store.get(Swarm, ObjectKey(namespace, name)))

    @app.put("/swarms/{namespace}/{name}/scale")
    def scale_swarm(namespace: str, name: str, req: ScaleRequest):
        if req.howmany < 0:
            raise DroneCtlAPIError("INVALID_COUNT", "howmany must be >= 0", 422)
        swarm = store.get(Swarm, ObjectKey(namespace, name))
        swarm.spec.howmany = req.howmany
        updated = store.update(swarm)
        logger.info(f"Swarm {updated.key} scaled to {req.howmany}")
        return swarm_summary(store, updated)

    @app.get("/drones")
    def list_drones(namespace: Optional[str] = None):
        return [drone_summary(d) for d in store.list(Drone, namespace=namespace)]

    @app.get("/nodes")
    def list_nodes():
        pods = store.list(Pod)
        occupants = {p.spec.node_name: p.name for p in pods if p.spec.node_name}
        return [
            {"name": n.name, "labels": n.metadata.labels, "pod": occupants.get(n.name)}
            for n in store.list(Node)
        ]

    return app
