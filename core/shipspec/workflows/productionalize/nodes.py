"""
Node implementations for the productionalize workflow.

Main line: gather_signals -> interviewer (loop) -> researcher -> scanner ->
planner -> workers (fan-out) -> aggregator <-> report_reviewer ->
prompt_generator.

Workers run in parallel and never interrupt. A worker with thin evidence
reports ``confidence="low"`` and its open questions; the aggregator puts
those in front of the reader instead.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from shipspec.analysis import gather_project_signals
from shipspec.graph import NodeContext, NodeProtocol, is_review_approval, require_text_resume
from shipspec.llm import LLMProvider
from shipspec.prompts import templates
from shipspec.prompts.schemas import (
    SEVERITY_ORDER,
    InterviewOutput,
    InterviewQuestion,
    ProductionalizePlan,
    ProductionalizeWorkerOutput,
    PromptsOutput,
    format_task_prompts,
)
from shipspec.tools.retriever import Retriever, format_chunks
from shipspec.tools.sast_scanner import SASTScanner
from shipspec.tools.web_search import WebSearchTool, format_results
from shipspec.utils.tokens import TokenBudget, prune_chunks_by_budget, truncate_text_by_chars
from shipspec.workflows.productionalize.categories import (
    MAX_SUBTASKS,
    merge_plan,
    required_categories,
)
from shipspec.workflows.productionalize.interview import (
    infer_context_from_signals,
    parse_interview_answers,
    require_interview_answers,
)
from shipspec.workflows.productionalize.state import SUBTASK_COMPLETE, SUBTASK_PENDING

logger = logging.getLogger(__name__)

WORKER_TOP_K = 10
CHUNK_BUDGET_SHARE = 0.7

EVIDENCE_LABELS = {
    "code": "Codebase Analysis",
    "web": "Web Research",
    "scan": "SAST Scanners",
}


def _user(prompt: str) -> list[dict[str, Any]]:
    return [{"role": "user", "content": prompt}]


class GatherSignalsNode(NodeProtocol):
    def __init__(self, project_path: Path | str):
        self.project_path = project_path

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        signals = await asyncio.to_thread(gather_project_signals, self.project_path)
        return {"signals": signals.model_dump()}


class InterviewerNode(NodeProtocol):
    """
    Asks the user about deployment, compliance and priorities when the
    signals leave them open. Two-phase: questions are generated into
    ``pending_interview_questions`` first, then asked on re-entry.
    """

    def __init__(self, llm: LLMProvider, max_tokens: int = 1024):
        self.llm = llm
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state

        if not state["interactive_mode"]:
            logger.info("Non-interactive mode: skipping interview")
            context = infer_context_from_signals(state["signals"], state["user_query"])
            return {"interview_complete": True, "user_context": context.model_dump()}

        if state["interview_complete"]:
            return {}

        pending = [
            InterviewQuestion.model_validate(q) for q in state["pending_interview_questions"]
        ]
        if pending:
            logger.info(f"Asking {len(pending)} interview question(s)")
            raw = ctx.interrupt(
                "interview", {"questions": [q.model_dump() for q in pending]}
            )
            answers = require_interview_answers(raw, ctx.thread_id)
            context = parse_interview_answers(answers, pending)
            return {
                "user_context": context.model_dump(),
                "interview_complete": True,
                "pending_interview_questions": [],
            }

        prompt = templates.build_interviewer_prompt(state["signals"] or {}, state["user_query"])
        result = await self.llm.complete_structured(
            _user(prompt),
            InterviewOutput,
            system=templates.INTERVIEWER_SYSTEM,
            max_tokens=self.max_tokens,
        )
        logger.info(f"Interviewer reasoning: {result.reasoning}")

        if result.satisfied or not result.questions:
            context = infer_context_from_signals(state["signals"], state["user_query"])
            return {
                "interview_complete": True,
                "user_context": context.model_dump(),
                "pending_interview_questions": [],
            }

        return {"pending_interview_questions": [q.model_dump() for q in result.questions]}


class ResearcherNode(NodeProtocol):
    """Searches for standards and best practices and condenses them into a digest."""

    def __init__(
        self,
        llm: LLMProvider,
        web_search: WebSearchTool | None,
        results_per_query: int = 3,
        max_tokens: int = 2048,
    ):
        self.llm = llm
        self.web_search = web_search
        self.results_per_query = results_per_query
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        if self.web_search is None:
            logger.info("No web search configured, skipping research")
            return {"diagnostics": "research skipped: no web search provider"}

        signals = ctx.state["signals"] or {}
        languages = ", ".join(signals.get("detected_languages") or []) or "web"
        queries = [q.format(languages=languages) for q in templates.RESEARCH_QUERIES]

        results = await asyncio.gather(
            *(self.web_search.search(q, self.results_per_query) for q in queries)
        )
        rendered = [format_results(r) for r in results]

        response = await self.llm.acomplete(
            _user(templates.build_research_prompt(signals, rendered)),
            system=templates.RESEARCHER_SYSTEM,
            max_tokens=self.max_tokens,
        )
        return {"research_digest": response.content}


class ScannerNode(NodeProtocol):
    """Runs the configured SAST scanners once, before planning."""

    def __init__(self, scanner: SASTScanner | None):
        self.scanner = scanner

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        if self.scanner is None:
            logger.info("No SAST scanner configured, skipping scan")
            return {}

        result = await self.scanner.run()
        update: dict[str, Any] = {"sast_results": [f.model_dump() for f in result.findings]}

        errors = [f for f in result.findings if f.rule in ("scanner_error", "scanner_timeout")]
        notes = [f"[{f.tool}] {f.rule}: {f.message}" for f in errors] + result.skipped
        for note in notes:
            logger.warning(f"⚠ SAST: {note}")
        if notes:
            update["diagnostics"] = "\n".join(notes)
        return update


def summarize_sast(sast_results: list[Mapping[str, Any]]) -> str:
    tools = sorted({r["tool"] for r in sast_results})
    return f"{len(sast_results)} findings detected from {', '.join(tools) or 'no tools'}."


class PlannerNode(NodeProtocol):
    """Hybrid decomposition: the model's plan merged with the required categories."""

    def __init__(self, llm: LLMProvider, max_subtasks: int = MAX_SUBTASKS, max_tokens: int = 2048):
        self.llm = llm
        self.max_subtasks = max_subtasks
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state
        sast_results = list(state["sast_results"])

        prompt = templates.build_planner_prompt(
            state["signals"] or {},
            state["research_digest"],
            summarize_sast(sast_results),
            state["user_context"],
            state["user_query"],
        )
        plan = await self.llm.complete_structured(
            _user(prompt),
            ProductionalizePlan,
            system=templates.PRODUCTIONALIZE_PLANNER_SYSTEM,
            max_tokens=self.max_tokens,
        )

        required = required_categories(
            state["signals"], state["user_context"], has_sast_results=bool(sast_results)
        )
        subtasks = merge_plan(plan.subtasks, required, self.max_subtasks)
        logger.info(
            f"Planned {len(subtasks)} subtask(s): {', '.join(s['category'] for s in subtasks)}"
        )
        return {"subtasks": subtasks}


def pending_subtasks(state: Mapping[str, Any]) -> list[dict[str, Any]]:
    return [dict(s) for s in state["subtasks"] if s["status"] == SUBTASK_PENDING]


def filter_scan_results(
    sast_results: list[Mapping[str, Any]], category: str, query: str
) -> list[dict[str, Any]]:
    """Scanner findings whose rule or message mentions the category or query."""
    needles = [n.lower() for n in (category, query) if n]
    return [
        dict(r)
        for r in sast_results
        if any(n in r["rule"].lower() or n in r["message"].lower() for n in needles)
    ]


class WorkerNode(NodeProtocol):
    """
    Executes one subtask (``ctx.item``).

    Dispatches on the subtask's source: ``code`` retrieves top-K chunks and
    prunes them to the chunk budget, ``web`` searches the web, ``scan``
    filters the precomputed SAST results.
    """

    def __init__(
        self,
        llm: LLMProvider,
        retriever: Retriever | None = None,
        web_search: WebSearchTool | None = None,
        token_budget: TokenBudget | None = None,
        max_evidence_chars: int = 40_000,
        max_tokens: int = 2048,
    ):
        self.llm = llm
        self.retriever = retriever
        self.web_search = web_search
        self.token_budget = token_budget
        self.max_evidence_chars = max_evidence_chars
        self.max_tokens = max_tokens

    async def gather_evidence(
        self, subtask: Mapping[str, Any], state: Mapping[str, Any]
    ) -> tuple[str, list[dict[str, Any]]]:
        """Return (evidence text, matching scan results)."""
        source = subtask["source"]

        if source == "code":
            if self.retriever is None:
                return "", []
            chunks = await self.retriever.search(subtask["query"], WORKER_TOP_K)
            if self.token_budget is not None:
                chunks = prune_chunks_by_budget(
                    chunks, self.token_budget.fraction(CHUNK_BUDGET_SHARE)
                )
            return format_chunks(chunks), []

        if source == "web":
            if self.web_search is None:
                return "Web search is not configured.", []
            return format_results(await self.web_search.search(subtask["query"])), []

        scans = filter_scan_results(
            list(state["sast_results"]), subtask["category"], subtask["query"]
        )
        return json.dumps(scans, indent=2), scans

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        subtask = dict(ctx.item)
        evidence, scans = await self.gather_evidence(subtask, ctx.state)
        evidence = truncate_text_by_chars(evidence, self.max_evidence_chars)

        prompt = templates.build_worker_prompt(
            subtask["category"],
            subtask["query"],
            ctx.state["signals"] or {},
            ctx.state["research_digest"],
            EVIDENCE_LABELS[subtask["source"]],
            evidence,
        )
        output = await self.llm.complete_structured(
            _user(prompt),
            ProductionalizeWorkerOutput,
            system=templates.PRODUCTIONALIZE_WORKER_SYSTEM,
            max_tokens=self.max_tokens,
        )

        findings = []
        for finding in output.findings:
            record = finding.model_dump()
            record["id"] = f"{subtask['id']}:{finding.id}"
            record["subtask_id"] = subtask["id"]
            record["confidence"] = output.confidence_level
            record["evidence"]["scan_results"] = scans
            findings.append(record)

        if output.confidence_level == "low":
            logger.info(
                f"Subtask {subtask['id']} finished with low confidence "
                f"({len(output.clarifying_questions)} open question(s))"
            )

        subtask.update(
            status=SUBTASK_COMPLETE,
            result=output.summary,
            confidence=output.confidence_level,
            clarifying_questions=output.clarifying_questions,
        )
        return {"subtasks": [subtask], "findings": findings}


def failed_subtask_update(subtask: Mapping[str, Any], error: BaseException) -> dict[str, Any]:
    """Record a failed or timed-out worker as a completed, low-confidence subtask."""
    if isinstance(error, TimeoutError):
        diagnostic = "worker timed out"
    else:
        diagnostic = f"worker failed: {type(error).__name__}: {error}"
    record = dict(subtask)
    record.update(
        status=SUBTASK_COMPLETE,
        result=f"Subtask could not be completed ({diagnostic}).",
        confidence="low",
        diagnostic=diagnostic,
    )
    return {"subtasks": [record]}


def rank_findings(findings: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Most severe first; keeps the first finding for each (category, title)."""
    ordered = sorted(findings, key=lambda f: SEVERITY_ORDER.get(f["severity"], len(SEVERITY_ORDER)))
    seen: set[tuple[str, str]] = set()
    ranked = []
    for finding in ordered:
        key = (finding["category"].lower(), finding["title"].strip().lower())
        if key in seen:
            continue
        seen.add(key)
        ranked.append(dict(finding))
    return ranked


def format_findings(findings: list[Mapping[str, Any]]) -> str:
    lines = []
    for f in findings:
        severity = f["severity"].upper()
        lines.append(f"- [{severity}] ({f['category']}) {f['title']}: {f['description']}")
        refs = f.get("compliance_refs") or []
        if refs:
            lines.append(f"  Compliance: {', '.join(refs)}")
        for ref in (f.get("evidence") or {}).get("code_refs") or []:
            lines.append(f"  Evidence: {ref['filepath']}:{ref['lines']}")
        for link in (f.get("evidence") or {}).get("links") or []:
            lines.append(f"  Link: {link}")
    return "\n".join(lines)


def format_open_questions(subtasks: list[Mapping[str, Any]]) -> str:
    lines = []
    for s in subtasks:
        if s.get("confidence") != "low":
            continue
        reason = s.get("diagnostic") or "thin evidence"
        lines.append(f"- {s['category']} ({s['id']}): low confidence, {reason}")
        for question in s.get("clarifying_questions") or []:
            lines.append(f"  - {question}")
    return "\n".join(lines)


class AggregatorNode(NodeProtocol):
    """Join point after the fan-out: writes (or rewrites) the report."""

    def __init__(self, llm: LLMProvider, max_tokens: int = 4096):
        self.llm = llm
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state
        feedback = (state["report_feedback"] or "").strip()
        if feedback:
            logger.info("Regenerating report with reviewer feedback")

        ranked = rank_findings(list(state["findings"]))
        prompt = templates.build_aggregator_prompt(
            state["signals"] or {},
            state["research_digest"],
            format_findings(ranked),
            format_open_questions(list(state["subtasks"])),
            state["final_report"],
            feedback,
        )
        response = await self.llm.acomplete(
            _user(prompt),
            system=templates.PRODUCTIONALIZE_AGGREGATOR_SYSTEM,
            max_tokens=self.max_tokens,
        )
        return {"final_report": response.content, "report_feedback": ""}


class ReportReviewerNode(NodeProtocol):
    """
    Review-only gate for the finished report.

    Empty input counts as approval, as do the usual affirmatives; any other
    text is feedback for the aggregator.
    """

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state

        if not state["interactive_mode"]:
            logger.info("Non-interactive mode: skipping report review")
            return {"report_approved": True}

        if not state["final_report"]:
            logger.warning("No report available for review, approving")
            return {"report_approved": True}

        raw = ctx.interrupt("report_review", {"report": state["final_report"]})
        verdict = require_text_resume(raw, ctx.thread_id, "feedback")

        if is_review_approval(verdict):
            logger.info("✓ Report approved")
            return {"report_approved": True, "report_feedback": ""}

        logger.info("Feedback received, report will be regenerated")
        return {"report_approved": False, "report_feedback": verdict.strip()}


class PromptGeneratorNode(NodeProtocol):
    """Turns the report and findings into agent-ready task prompts."""

    def __init__(self, llm: LLMProvider, max_tokens: int = 4096):
        self.llm = llm
        self.max_tokens = max_tokens

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        state = ctx.state
        prompt = templates.build_prompt_generator_prompt(
            state["final_report"],
            state["signals"] or {},
            format_findings(rank_findings(list(state["findings"]))),
        )
        output = await self.llm.complete_structured(
            _user(prompt),
            PromptsOutput,
            system=templates.PROMPT_GENERATOR_SYSTEM,
            max_tokens=self.max_tokens,
        )
        return {"task_prompts": format_task_prompts(output.prompts)}
