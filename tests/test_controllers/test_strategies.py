"""Tests for choosing the Drone strategy from config."""

import pytest

from dronectl.controllers import STRATEGIES, get_strategy
from dronectl.controllers.deployment import DeploymentStrategy
from dronectl.controllers.pod_per_node import PodPerNodeStrategy


def _config(strategy):
    return {"controller": {"strategy": strategy}}


class TestGetStrategy:
    def test_registry_is_keyed_by_strategy_name(self):
        assert STRATEGIES == {
            "pod-per-node": PodPerNodeStrategy,
            "deployment": DeploymentStrategy,
        }

    def test_default_is_pod_per_node(self, store):
        assert isinstance(get_strategy(store, {}), PodPerNodeStrategy)

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("pod-per-node", PodPerNodeStrategy),
            ("pod", PodPerNodeStrategy),
            ("pod_per_node", PodPerNodeStrategy),
            ("Pod-Per-Node", PodPerNodeStrategy),
            ("deployment", DeploymentStrategy),
            ("replicas", DeploymentStrategy),
            ("replica-counted", DeploymentStrategy),
        ],
    )
    def test_names_and_aliases(self, store, name, expected):
        assert isinstance(get_strategy(store, _config(name)), expected)

    def test_unknown_name(self, store):
        with pytest.raises(ValueError, match="Unknown drone strategy: daemonset"):
            get_strategy(store, _config("daemonset"))
