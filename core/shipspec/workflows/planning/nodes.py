"""
Node implementations for the planning workflow.

The clarifier and both document generators are two-phase interruptible
nodes: the first entry generates into a ``pending_*`` field and returns, the
edge loops back, and the second entry interrupts with exactly that pending
artifact. A resume re-enters the node, skips generation and acts on the
verdict, so the model is called once per review cycle no matter how many
times the thread is resumed.
"""

import asyncio
import logging
from abc import abstractmethod
from pathlib import Path
from typing import Any

from shipspec.analysis import gather_project_signals
from shipspec.graph import (
    NodeContext,
    NodeProtocol,
    is_explicit_approval,
    pair_answers,
    require_answers_resume,
    require_text_resume,
)
from shipspec.llm import LLMProvider
from shipspec.prompts import templates
from shipspec.prompts.schemas import ClarificationOutput, PromptsOutput, format_task_prompts
from shipspec.tools.retriever import CodeChunk, Retriever
from shipspec.utils.tokens import TokenBudget, prune_chunks_by_budget
from shipspec.workflows.planning.state import (
    PHASE_COMPLETE,
    PHASE_PRD_REVIEW,
    PHASE_SPEC_REVIEW,
)

logger = logging.getLogger(__name__)

CONTEXT_TOP_K = 15

REVIEW_INSTRUCTIONS = "Reply 'approve' to continue or describe the changes you want."


def _user(prompt: str) -> list[dict[str, Any]]:
    return [{"role": "user", "content": prompt}]


def format_code_context(chunks: list[CodeChunk]) -> str:
    return "\n\n".join(
        f"### {c.filepath}:{c.start_line}-{c.end_line}\n```{c.language}\n{c.content}\n```"
        for c in chunks
    )


class ContextGathererNode(NodeProtocol):
    """Collects project signals and, when an index is available, related code."""

    def __init__(
        self,
        project_path: Path | str | None,
        retriever: Retriever | None = None,
        token_budget: TokenBudget | None = None,
    ):
        self.project_path = project_path
        self.retriever = retriever
        self.token_budget = token_budget

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        update: dict[str, Any] = {}
        notes: list[str] = []

        if self.project_path is not None:
            try:
                signals = await asyncio.to_thread(gather_project_signals, self.project_path)
                update["signals"] = signals.model_dump()
                ci = f"CI ({signals.ci_platform or 'unknown'})" if signals.has_ci else "no CI"
                logger.info(
                    f"Detected: {', '.join(signals.detected_languages) or 'no languages'}, "
                    f"{signals.package_manager or 'no package manager'}, {ci}"
                )
            except OSError as e:
                logger.warning(f"Could not gather project signals, continuing without them: {e}")
                notes.append(f"project signals unavailable: {e}")

        idea = ctx.state["initial_idea"]
        if self.retriever is not None and idea:
            chunks = await self.retriever.search(idea, CONTEXT_TOP_K)
            if self.token_budget is not None:
                chunks = prune_chunks_by_budget(chunks, self.token_budget.fraction(0.7))
            update["code_context"] = format_code_context(chunks)
            logger.info(f"Found {len(chunks)} relevant code chunks")
        elif self.retriever is None:
            logger.info("No retriever configured, skipping code context search")

        if notes:
            update["diagnostics"] = "\n".join(notes)
        return update


class ClarifierNode(NodeProtocol):
    """Asks follow-up questions until the model is satisfied it can write a PRD."""

    def __init__(self, llm: LLMProvider, max_tokens: int = 1024):
        self.llm = llm
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state
        if state["clarification_complete"]:
            return {"phase": PHASE_PRD_REVIEW}

        pending = list(state["pending_questions"])
        if pending:
            logger.info(f"Asking {len(pending)} clarifying question(s)")
            raw = ctx.interrupt("clarification", {"questions": pending})
            answers = require_answers_resume(raw, ctx.thread_id, "answers")
            return {
                "clarification_history": pair_answers(pending, answers),
                "pending_questions": [],
            }

        prompt = templates.build_clarifier_prompt(
            state["initial_idea"],
            list(state["clarification_history"]),
            state["signals"],
            state["code_context"],
        )
        result = await self.llm.complete_structured(
            _user(prompt),
            ClarificationOutput,
            system=templates.CLARIFIER_SYSTEM,
            max_tokens=self.max_tokens,
        )
        logger.info(f"Clarifier reasoning: {result.reasoning}")

        if result.satisfied:
            return {"clarification_complete": True, "phase": PHASE_PRD_REVIEW}

        if not result.follow_up_questions:
            message = "clarifier was not satisfied but asked no questions; proceeding to the PRD"
            logger.warning(message)
            return {
                "clarification_complete": True,
                "phase": PHASE_PRD_REVIEW,
                "diagnostics": message,
            }

        return {"pending_questions": result.follow_up_questions}


class DocumentReviewNode(NodeProtocol):
    """
    Generates a document and holds it for explicit approval.

    Subclasses name the state fields and build the generation prompt.
    Approval moves the pending draft into the final field verbatim; anything
    else is feedback, and the unapproved draft becomes the revision base for
    the next generation.
    """

    interrupt_type: str = ""
    pending_field: str = ""
    final_field: str = ""
    revision_field: str = ""
    approved_phase: str = ""
    system_prompt: str = ""

    def __init__(self, llm: LLMProvider, max_tokens: int = 4096):
        self.llm = llm
        self.max_tokens = max_tokens

    @abstractmethod
    def build_prompt(self, state: Any) -> str:
        """Generation prompt for the current state, including any revision feedback."""

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state
        pending = state[self.pending_field]

        if pending:
            raw = ctx.interrupt(
                self.interrupt_type,
                {"document": pending, "instructions": REVIEW_INSTRUCTIONS},
            )
            verdict = require_text_resume(raw, ctx.thread_id, "verdict", allow_empty=False)

            if is_explicit_approval(verdict):
                logger.info(f"✓ {self.final_field} approved")
                return {
                    self.final_field: pending,
                    self.pending_field: "",
                    self.revision_field: "",
                    "phase": self.approved_phase,
                    "user_feedback": "",
                }

            logger.info(f"Feedback received, revising {self.final_field}")
            return {
                self.pending_field: "",
                self.revision_field: pending,
                "user_feedback": verdict.strip(),
            }

        response = await self.llm.acomplete(
            _user(self.build_prompt(state)),
            system=self.system_prompt,
            max_tokens=self.max_tokens,
        )
        logger.info(f"{self.final_field} generated, holding for review")
        return {self.pending_field: response.content, "user_feedback": ""}


class PRDGeneratorNode(DocumentReviewNode):
    interrupt_type = "prd_review"
    pending_field = "pending_prd"
    final_field = "prd"
    revision_field = "prd_revision_base"
    approved_phase = PHASE_SPEC_REVIEW
    system_prompt = templates.PRD_SYSTEM

    def build_prompt(self, state: Any) -> str:
        return templates.build_prd_prompt(
            state["initial_idea"],
            list(state["clarification_history"]),
            state["signals"],
            state["code_context"],
            state["prd_revision_base"],
            state["user_feedback"],
        )


class TechSpecGeneratorNode(DocumentReviewNode):
    interrupt_type = "spec_review"
    pending_field = "pending_tech_spec"
    final_field = "tech_spec"
    revision_field = "tech_spec_revision_base"
    approved_phase = PHASE_COMPLETE
    system_prompt = templates.TECH_SPEC_SYSTEM

    def build_prompt(self, state: Any) -> str:
        return templates.build_tech_spec_prompt(
            state["prd"],
            state["signals"],
            state["code_context"],
            state["tech_spec_revision_base"],
            state["user_feedback"],
        )


class TaskGeneratorNode(NodeProtocol):
    """Turns the approved tech spec into agent-ready task prompts."""

    def __init__(self, llm: LLMProvider, max_tokens: int = 4096):
        self.llm = llm
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        prompt = templates.build_task_prompts_prompt(ctx.state["tech_spec"], ctx.state["signals"])
        output = await self.llm.complete_structured(
            _user(prompt),
            PromptsOutput,
            system=templates.TASK_PROMPTS_SYSTEM,
            max_tokens=self.max_tokens,
        )
        logger.info(f"Generated {len(output.prompts)} implementation task(s)")
        return {"task_prompts": format_task_prompts(output.prompts), "phase": PHASE_COMPLETE}
