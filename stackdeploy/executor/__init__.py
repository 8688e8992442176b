"""Dependency-ordered apply/destroy of a StackPlan.

Exposes:
    ResourceGraphExecutor -- drives resources through the state machine.
    StateTable / StateStore -- in-memory states and their JSON file.
    topological_order / dependents_map -- plan graph helpers.
"""

from stackdeploy.executor.engine import ResourceGraphExecutor
from stackdeploy.executor.graph import dependents_map, topological_order
from stackdeploy.executor.state import StateStore, StateTable

__all__ = [
    "ResourceGraphExecutor",
    "StateStore",
    "StateTable",
    "dependents_map",
    "topological_order",
]
