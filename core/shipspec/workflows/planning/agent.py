"""Graph construction for the planning workflow."""

from pathlib import Path

from shipspec.config import RuntimeConfig
from shipspec.graph import EdgeCondition, EdgeSpec, GraphExecutor, GraphSpec, NodeSpec
from shipspec.graph.executor import CompiledGraph
from shipspec.graph.node import NodeProtocol
from shipspec.llm import LLMProvider
from shipspec.storage import CheckpointStore
from shipspec.tools.retriever import Retriever
from shipspec.utils.tokens import TokenBudget
from shipspec.workflows.planning.nodes import (
    ClarifierNode,
    ContextGathererNode,
    PRDGeneratorNode,
    TaskGeneratorNode,
    TechSpecGeneratorNode,
)
from shipspec.workflows.planning.state import planning_state

INTERRUPT_TYPES = ["clarification", "prd_review", "spec_review"]

nodes = [
    NodeSpec(
        id="context_gatherer",
        name="Context Gatherer",
        description="Collect project signals and related code",
    ),
    NodeSpec(
        id="clarifier",
        name="Clarifier",
        description="Ask follow-up questions until the idea is clear",
        interruptible=True,
    ),
    NodeSpec(
        id="prd_generator",
        name="PRD Generator",
        description="Write the PRD and hold it for approval",
        interruptible=True,
    ),
    NodeSpec(
        id="spec_generator",
        name="Tech Spec Generator",
        description="Write the technical specification and hold it for approval",
        interruptible=True,
    ),
    NodeSpec(
        id="task_generator",
        name="Task Generator",
        description="Turn the approved spec into agent-ready task prompts",
    ),
]

edges = [
    EdgeSpec(id="context-to-clarifier", source="context_gatherer", target="clarifier"),
    # clarifier -> clarifier until the model is satisfied
    EdgeSpec(
        id="clarifier-route",
        source="clarifier",
        condition=EdgeCondition.CONDITIONAL,
        router=lambda s: "prd_generator" if s["clarification_complete"] else "clarifier",
        targets=["clarifier", "prd_generator"],
    ),
    # prd_generator -> prd_generator until approved
    EdgeSpec(
        id="prd-route",
        source="prd_generator",
        condition=EdgeCondition.CONDITIONAL,
        router=lambda s: "spec_generator" if s["prd"] else "prd_generator",
        targets=["prd_generator", "spec_generator"],
    ),
    # spec_generator -> spec_generator until approved
    EdgeSpec(
        id="spec-route",
        source="spec_generator",
        condition=EdgeCondition.CONDITIONAL,
        router=lambda s: "task_generator" if s["tech_spec"] else "spec_generator",
        targets=["spec_generator", "task_generator"],
    ),
]

entry_node = "context_gatherer"
terminal_nodes = ["task_generator"]


class PlanningWorkflow:
    """
    Idea -> clarified requirements -> PRD -> tech spec -> task prompts.

    Flow: context_gatherer -> clarifier (loop) -> prd_generator (loop)
          -> spec_generator (loop) -> task_generator

    Every loop is a human review cycle; the thread suspends with a
    "clarification", "prd_review" or "spec_review" interrupt.
    """

    def __init__(
        self,
        llm: LLMProvider,
        project_path: Path | str | None = None,
        retriever: Retriever | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.llm = llm
        self.project_path = project_path
        self.retriever = retriever
        self.config = config or RuntimeConfig()
        self.nodes = nodes
        self.edges = edges
        self.entry_node = entry_node
        self.terminal_nodes = terminal_nodes

    def _build_graph(self) -> GraphSpec:
        return GraphSpec(
            id="planning",
            description="Spec-driven planning with human review of each document",
            entry_node=self.entry_node,
            terminal_nodes=self.terminal_nodes,
            nodes=self.nodes,
            edges=self.edges,
            state_schema=planning_state,
        )

    def _build_registry(self) -> dict[str, NodeProtocol]:
        budget = TokenBudget(self.config.max_context_tokens, self.config.reserved_output_tokens)
        max_tokens = self.config.max_tokens
        return {
            "context_gatherer": ContextGathererNode(self.project_path, self.retriever, budget),
            "clarifier": ClarifierNode(self.llm),
            "prd_generator": PRDGeneratorNode(self.llm, max_tokens),
            "spec_generator": TechSpecGeneratorNode(self.llm, max_tokens),
            "task_generator": TaskGeneratorNode(self.llm, max_tokens),
        }

    def compile(self, checkpoint_store: CheckpointStore | None = None) -> CompiledGraph:
        executor = GraphExecutor(checkpoint_store=checkpoint_store)
        return executor.compile(self._build_graph(), self._build_registry())


def create_planning_workflow(
    llm: LLMProvider,
    project_path: Path | str | None = None,
    retriever: Retriever | None = None,
    config: RuntimeConfig | None = None,
    checkpoint_store: CheckpointStore | None = None,
) -> CompiledGraph:
    """Build and compile the planning workflow."""
    workflow = PlanningWorkflow(llm, project_path, retriever, config)
    return workflow.compile(checkpoint_store)
