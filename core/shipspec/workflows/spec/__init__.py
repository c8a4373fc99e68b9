"""
Spec workflow - answer a question about the codebase with parallel subtasks.
"""

from shipspec.workflows.spec.agent import SpecWorkflow, create_spec_workflow, edges, nodes
from shipspec.workflows.spec.state import spec_state

__all__ = ["SpecWorkflow", "create_spec_workflow", "edges", "nodes", "spec_state"]
