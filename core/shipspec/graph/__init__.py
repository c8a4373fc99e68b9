"""Graph structures for resumable workflow execution."""

from shipspec.graph.edge import EdgeCondition, EdgeSpec, GraphSpec
from shipspec.graph.executor import (
    CompiledGraph,
    ExecutionResult,
    ExecutorConfig,
    FanOutBranch,
    GraphExecutor,
)
from shipspec.graph.interrupt import (
    NodeInterrupt,
    expect_interrupt,
    is_explicit_approval,
    is_review_approval,
    pair_answers,
    require_answers_resume,
    require_text_resume,
)
from shipspec.graph.node import FanOutNode, FunctionNode, NodeContext, NodeProtocol, NodeSpec
from shipspec.graph.state import Reducer, StateField, StateSchema, apply_reducer

__all__ = [
    # State
    "Reducer",
    "StateField",
    "StateSchema",
    "apply_reducer",
    # Nodes
    "NodeSpec",
    "NodeContext",
    "NodeProtocol",
    "FunctionNode",
    "FanOutNode",
    # Edges
    "EdgeSpec",
    "EdgeCondition",
    "GraphSpec",
    # Interrupts
    "NodeInterrupt",
    "expect_interrupt",
    "is_explicit_approval",
    "is_review_approval",
    "pair_answers",
    "require_answers_resume",
    "require_text_resume",
    # Executor
    "GraphExecutor",
    "CompiledGraph",
    "ExecutionResult",
    "ExecutorConfig",
    "FanOutBranch",
]
