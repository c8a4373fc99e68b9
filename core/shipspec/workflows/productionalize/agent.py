"""Graph construction for the productionalize workflow."""

from pathlib import Path

from shipspec.config import RuntimeConfig
from shipspec.graph import (
    EdgeCondition,
    EdgeSpec,
    FanOutNode,
    GraphExecutor,
    GraphSpec,
    NodeSpec,
)
from shipspec.graph.executor import CompiledGraph
from shipspec.graph.node import NodeProtocol
from shipspec.llm import LLMProvider
from shipspec.storage import CheckpointStore
from shipspec.tools.retriever import Retriever
from shipspec.tools.sast_scanner import SASTScanner
from shipspec.tools.web_search import WebSearchTool
from shipspec.utils.tokens import TokenBudget
from shipspec.workflows.productionalize.nodes import (
    AggregatorNode,
    GatherSignalsNode,
    InterviewerNode,
    PlannerNode,
    PromptGeneratorNode,
    ReportReviewerNode,
    ResearcherNode,
    ScannerNode,
    WorkerNode,
    failed_subtask_update,
    pending_subtasks,
)
from shipspec.workflows.productionalize.state import productionalize_state

INTERRUPT_TYPES = ["interview", "report_review"]

nodes = [
    NodeSpec(
        id="gather_signals",
        name="Gather Signals",
        description="Detect stack, CI, tests, containers and IaC",
    ),
    NodeSpec(
        id="interviewer",
        name="Interviewer",
        description="Ask about deployment, compliance and priorities",
        interruptible=True,
    ),
    NodeSpec(
        id="researcher",
        name="Researcher",
        description="Digest current standards and best practices",
    ),
    NodeSpec(
        id="scanner",
        name="SAST Scanner",
        description="Run the configured static analysis tools",
    ),
    NodeSpec(
        id="planner",
        name="Planner",
        description="Decompose the analysis into category subtasks",
    ),
    NodeSpec(
        id="workers",
        name="Workers",
        description="Analyze each subtask in parallel",
    ),
    NodeSpec(
        id="aggregator",
        name="Aggregator",
        description="Combine findings into the readiness report",
    ),
    NodeSpec(
        id="report_reviewer",
        name="Report Reviewer",
        description="Hold the report for approval or feedback",
        interruptible=True,
    ),
    NodeSpec(
        id="prompt_generator",
        name="Prompt Generator",
        description="Turn the report into agent-ready task prompts",
    ),
]


edges = [
    EdgeSpec(id="signals-to-interviewer", source="gather_signals", target="interviewer"),
    # interviewer -> interviewer while questions are outstanding
    EdgeSpec(
        id="interviewer-route",
        source="interviewer",
        condition=EdgeCondition.CONDITIONAL,
        router=lambda s: "researcher" if s["interview_complete"] else "interviewer",
        targets=["interviewer", "researcher"],
    ),
    EdgeSpec(id="researcher-to-scanner", source="researcher", target="scanner"),
    EdgeSpec(id="scanner-to-planner", source="scanner", target="planner"),
    EdgeSpec(
        id="planner-route",
        source="planner",
        condition=EdgeCondition.CONDITIONAL,
        router=lambda s: "workers" if pending_subtasks(s) else "aggregator",
        targets=["workers", "aggregator"],
    ),
    EdgeSpec(id="workers-to-aggregator", source="workers", target="aggregator"),
    EdgeSpec(id="aggregator-to-reviewer", source="aggregator", target="report_reviewer"),
    # report_reviewer -> aggregator until approved
    EdgeSpec(
        id="review-route",
        source="report_reviewer",
        condition=EdgeCondition.CONDITIONAL,
        router=lambda s: "prompt_generator" if s["report_approved"] else "aggregator",
        targets=["aggregator", "prompt_generator"],
    ),
]

entry_node = "gather_signals"
terminal_nodes = ["prompt_generator"]


class ProductionalizeWorkflow:
    """
    Production-readiness analysis of an existing codebase.

    Flow: gather_signals -> interviewer (loop) -> researcher -> scanner
          -> planner -> workers (fan-out) -> aggregator <-> report_reviewer
          -> prompt_generator

    The thread suspends with an "interview" or "report_review" interrupt in
    interactive mode; with ``interactive_mode=False`` in the input it runs
    straight through.
    """

    def __init__(
        self,
        llm: LLMProvider,
        project_path: Path | str = ".",
        retriever: Retriever | None = None,
        web_search: WebSearchTool | None = None,
        scanner: SASTScanner | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.llm = llm
        self.project_path = project_path
        self.retriever = retriever
        self.web_search = web_search
        self.config = config or RuntimeConfig()
        self.scanner = scanner or SASTScanner(
            project_path,
            tools=self.config.sast_tools,
            timeout_seconds=self.config.sast_timeout_seconds,
            max_output_mb=self.config.sast_max_output_mb,
        )
        self.nodes = nodes
        self.edges = edges
        self.entry_node = entry_node
        self.terminal_nodes = terminal_nodes

    def _build_graph(self) -> GraphSpec:
        return GraphSpec(
            id="productionalize",
            description="Production-readiness report with parallel category analysis",
            entry_node=self.entry_node,
            terminal_nodes=self.terminal_nodes,
            nodes=self.nodes,
            edges=self.edges,
            state_schema=productionalize_state,
        )

    def _build_registry(self) -> dict[str, NodeProtocol]:
        budget = TokenBudget(self.config.max_context_tokens, self.config.reserved_output_tokens)
        max_tokens = self.config.max_tokens
        worker = WorkerNode(
            self.llm,
            retriever=self.retriever,
            web_search=self.web_search,
            token_budget=budget,
            max_evidence_chars=self.config.max_evidence_chars,
        )
        return {
            "gather_signals": GatherSignalsNode(self.project_path),
            "interviewer": InterviewerNode(self.llm),
            "researcher": ResearcherNode(self.llm, self.web_search),
            "scanner": ScannerNode(self.scanner),
            "planner": PlannerNode(self.llm),
            "workers": FanOutNode(
                items=pending_subtasks,
                worker=worker,
                on_error=failed_subtask_update,
                max_concurrency=self.config.worker_concurrency,
                timeout_seconds=self.config.worker_timeout_seconds,
                item_id=lambda s: s["id"],
            ),
            "aggregator": AggregatorNode(self.llm, max_tokens),
            "report_reviewer": ReportReviewerNode(),
            "prompt_generator": PromptGeneratorNode(self.llm, max_tokens),
        }

    def compile(self, checkpoint_store: CheckpointStore | None = None) -> CompiledGraph:
        executor = GraphExecutor(checkpoint_store=checkpoint_store)
        return executor.compile(self._build_graph(), self._build_registry())


def create_productionalize_workflow(
    llm: LLMProvider,
    project_path: Path | str = ".",
    retriever: Retriever | None = None,
    web_search: WebSearchTool | None = None,
    scanner: SASTScanner | None = None,
    config: RuntimeConfig | None = None,
    checkpoint_store: CheckpointStore | None = None,
) -> CompiledGraph:
    """Build and compile the productionalize workflow."""
    workflow = ProductionalizeWorkflow(llm, project_path, retriever, web_search, scanner, config)
    return workflow.compile(checkpoint_store)
