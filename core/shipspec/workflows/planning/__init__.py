"""
Planning workflow - turn an idea into a reviewed PRD, tech spec and task prompts.
"""

from shipspec.workflows.planning.agent import (
    INTERRUPT_TYPES,
    PlanningWorkflow,
    create_planning_workflow,
    edges,
    nodes,
)
from shipspec.workflows.planning.state import planning_state

__all__ = [
    "INTERRUPT_TYPES",
    "PlanningWorkflow",
    "create_planning_workflow",
    "edges",
    "nodes",
    "planning_state",
]
