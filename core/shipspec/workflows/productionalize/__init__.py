"""
Productionalize workflow - production-readiness analysis of an existing codebase.
"""

from shipspec.workflows.productionalize.agent import (
    INTERRUPT_TYPES,
    ProductionalizeWorkflow,
    create_productionalize_workflow,
    edges,
    nodes,
)
from shipspec.workflows.productionalize.state import productionalize_state

__all__ = [
    "INTERRUPT_TYPES",
    "ProductionalizeWorkflow",
    "create_productionalize_workflow",
    "edges",
    "nodes",
    "productionalize_state",
]
