"""Structured-output models requested from the generation executor."""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["critical", "high", "medium", "low", "info"]
Confidence = Literal["high", "medium", "low"]
EvidenceSource = Literal["code", "web", "scan"]

SEVERITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3, "info": 4}


# Planning


class ClarificationOutput(BaseModel):
    satisfied: bool = Field(description="Whether there is enough information to write a PRD")
    follow_up_questions: list[str] = Field(
        default_factory=list,
        max_length=3,
        description="Follow-up questions for the user (empty if satisfied)",
    )
    reasoning: str = ""


class TaskPrompt(BaseModel):
    id: int
    prompt: str


class PromptsOutput(BaseModel):
    reasoning: str = ""
    prompts: list[TaskPrompt]


def format_task_prompts(prompts: list[TaskPrompt]) -> str:
    """Render task prompts as numbered, fenced markdown blocks."""
    return "\n\n".join(f"### Task {p.id}:\n```\n{p.prompt}\n```" for p in prompts)


# Productionalize


class InterviewQuestion(BaseModel):
    id: str
    question: str
    type: Literal["select", "multiselect", "text"] = "text"
    options: list[str] = Field(default_factory=list)
    required: bool = False


class InterviewOutput(BaseModel):
    satisfied: bool
    questions: list[InterviewQuestion] = Field(default_factory=list, max_length=4)
    reasoning: str = ""


class UserAnalysisContext(BaseModel):
    """What the user told us (or what we inferred) about the analysis focus."""

    primary_concerns: list[str] = Field(default_factory=list)
    deployment_target: str | None = None
    compliance_requirements: list[str] = Field(default_factory=list)
    priority_categories: list[str] = Field(default_factory=list)
    additional_context: str = ""


class PlannedSubtask(BaseModel):
    id: str
    category: str
    query: str
    source: EvidenceSource
    rationale: str = ""


class ProductionalizePlan(BaseModel):
    reasoning: str = ""
    subtasks: list[PlannedSubtask] = Field(default_factory=list)


class CodeRef(BaseModel):
    filepath: str
    lines: str = ""
    content: str = ""


class FindingEvidence(BaseModel):
    code_refs: list[CodeRef] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)


class FindingOutput(BaseModel):
    id: str
    severity: Severity
    category: str
    title: str
    description: str
    compliance_refs: list[str] = Field(default_factory=list)
    evidence: FindingEvidence = Field(default_factory=FindingEvidence)


class ProductionalizeWorkerOutput(BaseModel):
    reasoning: str = ""
    findings: list[FindingOutput] = Field(default_factory=list)
    summary: str
    confidence_level: Confidence = "medium"
    clarifying_questions: list[str] = Field(
        default_factory=list,
        description="Questions that would raise confidence; surfaced in the report",
    )


# Codebase question (spec) workflow


class SpecSubtask(BaseModel):
    id: str
    query: str
    reasoning: str = ""


class SpecPlan(BaseModel):
    reasoning: str = ""
    subtasks: list[SpecSubtask] = Field(min_length=1)


class SpecWorkerOutput(BaseModel):
    reasoning: str = ""
    summary: str
    confidence_level: Confidence = "medium"
    missing_context: list[str] = Field(default_factory=list)
