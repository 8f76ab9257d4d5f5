from .deployment import DeploymentStrategy
from .drone import DroneReconciler, DroneStrategy
from .pod_per_node import PodPerNodeStrategy
from .swarm import SwarmReconciler

__all__ = [
    "get_strategy",
    "setup_controllers",
    "DeploymentStrategy",
    "DroneReconciler",
    "DroneStrategy",
    "PodPerNodeStrategy",
    "SwarmReconciler",
]

STRATEGIES = {
    PodPerNodeStrategy.name: PodPerNodeStrategy,
    DeploymentStrategy.name: DeploymentStrategy,
}

# Other spellings accepted for controller.strategy.
STRATEGY_ALIASES = {
    "pod": PodPerNodeStrategy.name,
    "pod_per_node": PodPerNodeStrategy.name,
    "replicas": DeploymentStrategy.name,
    "replica-counted": DeploymentStrategy.name,
}


def get_strategy(store, config: dict) -> DroneStrategy:
    """Build the Drone strategy named by ``controller.strategy``."""
    name = config.get("controller", {}).get("strategy", PodPerNodeStrategy.name).lower()
    strategy_cls = STRATEGIES.get(STRATEGY_ALIASES.get(name, name))
    if strategy_cls is None:
        raise ValueError(f"Unknown drone strategy: {name}")
    return strategy_cls(store, config)


def setup_controllers(manager, config: dict):
    """Wire the Swarm and Drone reconcilers into *manager*.

    Returns ``(swarm_reconciler, drone_reconciler)``.
    """
    store = manager.store
    workers = int(config.get("controller", {}).get("workers", 1))
    swarm = SwarmReconciler(store, config)
    drone = DroneReconciler(store, get_strategy(store, config), workers=workers)
    swarm.setup(manager)
    drone.setup(manager)
    return swarm, drone
