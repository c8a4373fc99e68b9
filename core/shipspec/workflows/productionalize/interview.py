"""Mapping interview answers and project signals onto a UserAnalysisContext."""

from collections.abc import Mapping
from typing import Any

from shipspec.errors import InvalidResumeError
from shipspec.prompts.schemas import InterviewQuestion, UserAnalysisContext

DEPLOYMENT_KEYWORDS = [
    ("aws", "aws"),
    ("gcp", "gcp"),
    ("google", "gcp"),
    ("azure", "azure"),
    ("on-prem", "on-premises"),
    ("hybrid", "hybrid"),
]

COMPLIANCE_KEYWORDS = [
    ("soc", "soc2"),
    ("hipaa", "hipaa"),
    ("gdpr", "gdpr"),
    ("pci", "pci-dss"),
    ("iso", "iso27001"),
]

CONCERN_KEYWORDS = ["security", "performance", "compliance", "cost", "reliability"]


def require_interview_answers(
    value: Any, thread_id: str | None, field: str = "answers"
) -> dict[str, str | list[str]]:
    """
    Validate interview answers keyed by question id.

    Values are a string (select/text) or a list of strings (multiselect).

    Raises:
        InvalidResumeError: On any other shape
    """
    if not isinstance(value, Mapping):
        raise InvalidResumeError(
            thread_id, field, "an object mapping question id to answer", value
        )
    answers: dict[str, str | list[str]] = {}
    for key, answer in value.items():
        if isinstance(answer, str):
            answers[str(key)] = answer
        elif isinstance(answer, list) and all(isinstance(a, str) for a in answer):
            answers[str(key)] = list(answer)
        else:
            raise InvalidResumeError(
                thread_id, f"{field}[{key}]", "a string or a list of strings", answer
            )
    return answers


def _add_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def parse_interview_answers(
    answers: Mapping[str, str | list[str]],
    questions: list[InterviewQuestion],
) -> UserAnalysisContext:
    """Route each answer to a context field based on what its question asked about."""
    context = UserAnalysisContext()

    for question in questions:
        answer = answers.get(question.id)
        if not answer:
            continue
        values = answer if isinstance(answer, list) else [answer]
        asked = question.question.lower()

        if any(k in asked for k in ("deployment", "cloud", "infrastructure")):
            for value in values:
                lowered = value.lower()
                target = next((t for k, t in DEPLOYMENT_KEYWORDS if k in lowered), None)
                if target:
                    context.deployment_target = target
                    break
        elif any(k in asked for k in ("compliance", "regulation", "standard")):
            for value in values:
                lowered = value.lower()
                for keyword, requirement in COMPLIANCE_KEYWORDS:
                    if keyword in lowered:
                        _add_unique(context.compliance_requirements, requirement)
        elif any(k in asked for k in ("concern", "priority", "focus")):
            for value in values:
                lowered = value.lower()
                for concern in CONCERN_KEYWORDS:
                    if concern in lowered:
                        _add_unique(context.primary_concerns, concern)
        elif "category" in asked or "area" in asked:
            for value in values:
                _add_unique(context.priority_categories, value)
        else:
            text = "\n".join(values)
            context.additional_context = (
                f"{context.additional_context}\n{text}" if context.additional_context else text
            )

    if not context.primary_concerns:
        context.primary_concerns.append("security")
    return context


def infer_context_from_signals(
    signals: Mapping[str, Any] | None, user_query: str
) -> UserAnalysisContext:
    """Best-effort context when the interview is skipped."""
    signals = signals or {}
    context = UserAnalysisContext(additional_context=user_query or "")

    iac_tool = (signals.get("iac_tool") or "").lower()
    if signals.get("has_iac") and "terraform" in iac_tool:
        context.deployment_target = "aws"

    if signals.get("has_docker"):
        context.priority_categories.append("container-security")

    query = (user_query or "").lower()
    for keyword, requirement in COMPLIANCE_KEYWORDS:
        if keyword != "iso" and keyword in query:
            _add_unique(context.compliance_requirements, requirement)

    context.primary_concerns = ["security", "compliance"]
    return context
