"""Node-aware placement: pick a free machine for a new Drone.

A machine is eligible when it carries the drone role label; it is occupied
when any workload unit in the Drone's namespace is bound to it. Placement is
a read-then-write decision with no claim on the chosen machine, so two
Drones reconciled at the same instant can pick the same node.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from dronectl.resources import TERMINAL_PHASES, Node, Pod

logger = logging.getLogger("DroneCtl.Placement")

DEFAULT_ROLE_LABEL = "node-role.kubernetes.io/drone"


def eligible_machines(nodes: Iterable[Node], role_label: str = DEFAULT_ROLE_LABEL) -> List[Node]:
    """Return the nodes carrying *role_label*, preserving listing order."""
    return [n for n in nodes if role_label in n.metadata.labels]


def occupied_machine_names(pods: Iterable[Pod]) -> Set[str]:
    """Collect the node names that host a live workload unit.

    Pods that already finished (``Succeeded`` or ``Failed``) do not hold
    their node.
    """
    return {
        p.spec.node_name
        for p in pods
        if p.spec.node_name and p.status.phase not in TERMINAL_PHASES
    }


def select_free_machine(eligible: Iterable[Node], occupied: Set[str]) -> Optional[Node]:
    """Return the first eligible node not in *occupied*.

    ``None`` means every eligible machine is taken: the fleet is at capacity.
    That is a steady state, not an error.
    """
    for node in eligible:
        if node.name not in occupied:
            return node
    return None
