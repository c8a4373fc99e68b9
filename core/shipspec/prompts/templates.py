"""
System prompts and user-prompt builders for the workflow nodes.

Builders take plain values from state and return the user message text; they
never call a model.
"""

import json
from collections.abc import Mapping
from typing import Any

SEVERITY_DEFINITIONS = """\
Severity levels:
- critical: exploitable in production, data breach risk, or a compliance blocker
- high: significant security gap or missing critical functionality
- medium: best-practice violation or maintainability concern
- low: code smell or documentation gap
- info: observation or minor improvement"""

# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

CLARIFIER_SYSTEM = """\
You help users sharpen a product idea before a PRD is written.
Decide whether you know enough about the problem, the users, the key
features, success criteria and constraints to write a complete PRD.
If you do not, ask at most 3 focused follow-up questions. Build on earlier
answers instead of repeating questions. Reply with JSON only."""

PRD_SYSTEM = """\
You are a senior product manager. Write a Product Requirements Document in
Markdown with these sections: Problem Statement, Target Users, User Stories,
Features & Requirements (must have / nice to have), Success Metrics,
Non-Goals, Constraints & Assumptions, Open Questions.
Be specific and reference the existing codebase where context is given."""

TECH_SPEC_SYSTEM = """\
You are a senior software architect. Write a Technical Specification in
Markdown from the approved PRD: Overview, Architecture, Data Models, API
Design, Implementation Plan, Dependencies, Testing Strategy, Risks &
Mitigations, Security Considerations, Performance Considerations.
Name concrete files and modules where the codebase context allows it."""

TASK_PROMPTS_SYSTEM = """\
You are a technical lead turning a technical specification into prompts for
coding agents. Each prompt starts with an action verb, names the files to
touch, explains the context, gives step-by-step guidance and ends with
acceptance criteria. Order prompts so that foundations come first.
Number the prompts from 1. Reply with JSON only."""


def _signals_block(signals: Mapping[str, Any] | None) -> str:
    if not signals:
        return ""
    return f"## Project Signals\n```json\n{json.dumps(signals, indent=2)}\n```\n\n"


def _history_block(title: str, history: list[Mapping[str, str]]) -> str:
    if not history:
        return ""
    lines = [f"## {title}"]
    for entry in history:
        lines.append(f"**Q:** {entry['question']}\n**A:** {entry['answer']}\n")
    return "\n".join(lines) + "\n"


def build_clarifier_prompt(
    initial_idea: str,
    history: list[Mapping[str, str]],
    signals: Mapping[str, Any] | None,
    code_context: str,
) -> str:
    prompt = f"## Initial Idea\n{initial_idea}\n\n"
    prompt += _history_block("Previous Q&A", history)
    prompt += _signals_block(signals)
    if code_context:
        prompt += f"## Relevant Code Context\n{code_context}\n\n"
    prompt += (
        "Is this enough to write a comprehensive PRD? "
        "If not, which questions would clarify the requirements?"
    )
    return prompt


def build_prd_prompt(
    initial_idea: str,
    history: list[Mapping[str, str]],
    signals: Mapping[str, Any] | None,
    code_context: str,
    revision_base: str,
    feedback: str,
) -> str:
    prompt = f"## Initial Idea\n{initial_idea}\n\n"
    prompt += _history_block("Clarification History", history)
    prompt += _signals_block(signals)
    if code_context:
        prompt += f"## Relevant Code Context\n{code_context}\n\n"
    if revision_base and feedback:
        prompt += f"## Previous PRD (needs revision)\n{revision_base}\n\n"
        prompt += f"## Reviewer Feedback\n{feedback}\n\n"
        prompt += "Revise the PRD to address the feedback."
    else:
        prompt += "Write the PRD."
    return prompt


def build_tech_spec_prompt(
    prd: str,
    signals: Mapping[str, Any] | None,
    code_context: str,
    revision_base: str,
    feedback: str,
) -> str:
    prompt = f"## Approved PRD\n{prd}\n\n"
    prompt += _signals_block(signals)
    if code_context:
        prompt += f"## Relevant Code Context\n{code_context}\n\n"
    if revision_base and feedback:
        prompt += f"## Previous Tech Spec (needs revision)\n{revision_base}\n\n"
        prompt += f"## Reviewer Feedback\n{feedback}\n\n"
        prompt += "Revise the technical specification to address the feedback."
    else:
        prompt += "Write the technical specification."
    return prompt


def build_task_prompts_prompt(tech_spec: str, signals: Mapping[str, Any] | None) -> str:
    return (
        f"## Technical Specification\n{tech_spec}\n\n"
        + _signals_block(signals)
        + "Convert this specification into ordered, self-contained task prompts."
    )


# ---------------------------------------------------------------------------
# Productionalize
# ---------------------------------------------------------------------------

INTERVIEWER_SYSTEM = """\
You prepare a production-readiness analysis. Given the project signals and
the user's request, decide whether you can tailor the analysis already.
If not, ask at most 4 questions (deployment target, compliance needs,
primary concerns, priority areas) that the signals do not answer. Use
"select" or "multiselect" questions with options where that fits.
Reply with JSON only."""

RESEARCHER_SYSTEM = """\
You are a technical researcher. Condense the search results into a short
"Compliance and Best Practices Digest" relevant to the project signals.
Prefer official sources (NIST, OWASP, cloud providers) and say when a
requirement is stack-specific."""

RESEARCH_QUERIES = [
    "SOC 2 Trust Services Criteria summary for security and availability",
    "Production readiness best practices for {languages} applications",
    "OWASP ASVS key security verification requirements for web applications",
    "NIST SSDF key secure software development practices overview",
    "Google SRE production readiness launch checklist summary",
]

PRODUCTIONALIZE_PLANNER_SYSTEM = """\
You plan a production-readiness analysis as 6-10 subtasks.
Always cover: security, soc2, code-quality, dependencies, testing,
configuration. Add categories the project signals call for.
Pick a source per subtask: "code" to inspect the implementation, "web" for
stack-specific guidance, "scan" when SAST findings exist for the category.
Reply with JSON only."""

PRODUCTIONALIZE_WORKER_SYSTEM = f"""\
You analyze one production-readiness category and report findings.
{SEVERITY_DEFINITIONS}

For each finding explain why it matters, cite compliance controls (e.g.
"SOC 2 CC6.1", "OWASP A03:2021") and give file:line evidence or links.
Report your confidence. If the evidence is too thin to be sure, say so with
confidence "low" and list the questions that would settle it.
Reply with JSON only."""

PRODUCTIONALIZE_AGGREGATOR_SYSTEM = """\
You write the Production Readiness Report in Markdown for an engineering
lead: Executive Summary with a readiness score (start at 100; -20 per
critical up to 3, -10 per high up to 5, -5 per medium up to 10; minimum 0),
Category Breakdown with severity and evidence, Compliance Alignment,
Open Questions for any low-confidence areas, and a Recommendations Timeline
("Must Fix Before Production", "Next 7 Days", "Next 30 Days")."""

PROMPT_GENERATOR_SYSTEM = """\
You convert a production-readiness report and its findings into prompts for
coding agents, ordered by severity and dependency. Each prompt names the
files to change, the steps to take and how to verify the fix. Number the
prompts from 1. Reply with JSON only."""


def build_interviewer_prompt(signals: Mapping[str, Any], user_query: str) -> str:
    return (
        _signals_block(signals)
        + f"## User Request\n{user_query or '(no specific focus given)'}\n\n"
        "Ask only for information that the signals and the request leave open "
        "and that would change the analysis."
    )


def build_research_prompt(signals: Mapping[str, Any], search_results: list[str]) -> str:
    joined = "\n\n".join(search_results)
    return _signals_block(signals) + f"## Search Results\n{joined}\n\nWrite the digest."


def build_planner_prompt(
    signals: Mapping[str, Any],
    research_digest: str,
    sast_summary: str,
    user_context: Mapping[str, Any] | None,
    user_query: str,
) -> str:
    prompt = _signals_block(signals)
    prompt += f"## Research Digest\n{research_digest or '(none)'}\n\n"
    prompt += f"## SAST Results\n{sast_summary}\n\n"
    if user_context:
        prompt += f"## User Context\n```json\n{json.dumps(user_context, indent=2)}\n```\n\n"
    prompt += (
        f"## User Request\n"
        f"{user_query or 'Perform a full production-readiness analysis of this codebase.'}"
    )
    return prompt


def build_worker_prompt(
    category: str,
    query: str,
    signals: Mapping[str, Any],
    research_digest: str,
    evidence_label: str,
    evidence: str,
) -> str:
    return (
        f"## Category\n{category}\n\n"
        + _signals_block(signals)
        + f"## Compliance Digest\n{research_digest or '(none)'}\n\n"
        f"## Evidence ({evidence_label})\n{evidence or '(no evidence found)'}\n\n"
        f"## Subtask Query\n{query}"
    )


def build_aggregator_prompt(
    signals: Mapping[str, Any],
    research_digest: str,
    findings_text: str,
    open_questions_text: str,
    previous_report: str,
    feedback: str,
) -> str:
    prompt = _signals_block(signals)
    prompt += f"## Research Digest\n{research_digest or '(none)'}\n\n"
    prompt += f"## Findings (most severe first)\n{findings_text or '(no findings)'}\n\n"
    if open_questions_text:
        prompt += f"## Low-Confidence Areas\n{open_questions_text}\n\n"
    if feedback:
        if previous_report:
            prompt += f"## Previous Report\n{previous_report}\n\n"
        prompt += f"## Reviewer Feedback\n{feedback}\n\n"
        prompt += "Regenerate the report, addressing the feedback."
    else:
        prompt += "Write the Production Readiness Report."
    return prompt


def build_prompt_generator_prompt(
    final_report: str,
    signals: Mapping[str, Any],
    findings_text: str,
) -> str:
    return (
        f"## Production Readiness Report\n{final_report or '(no report available)'}\n\n"
        + _signals_block(signals)
        + f"## Detailed Findings\n{findings_text or '(no findings)'}\n\n"
        "Generate agent-ready task prompts in the order the report prioritizes."
    )


# ---------------------------------------------------------------------------
# Codebase question (spec) workflow
# ---------------------------------------------------------------------------

SPEC_PLANNER_SYSTEM = """\
You are a senior software architect. Split the user's question about the
codebase into 3-7 focused, non-overlapping subtasks that can each be
answered from retrieved code alone. Reply with JSON only."""

SPEC_WORKER_SYSTEM = """\
You investigate one question about a codebase using the retrieved code.
Cite files and line numbers. If the code shown is not enough, say what is
missing instead of guessing. Reply with JSON only."""

SPEC_AGGREGATOR_SYSTEM = """\
You synthesize subtask answers into one Markdown document that answers the
original request: Executive Summary, Key Findings (grouped by theme),
Technical Details (with file:line references), Recommendations.
Deduplicate and prioritize; do not just concatenate."""


def build_spec_worker_prompt(query: str, code_context: str) -> str:
    return f'Query: "{query}"\n\nCode Context:\n{code_context or "(no code retrieved)"}'


def build_spec_aggregator_prompt(user_query: str, findings: str) -> str:
    return f"Original Request: {user_query}\n\nFindings:\n{findings}"
