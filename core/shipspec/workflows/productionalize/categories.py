"""
Subtask planning policy: a fixed baseline plus categories the signals ask for.

The model proposes a plan; ``merge_plan`` guarantees every required category
is covered (adding a default subtask where the model skipped one), caps the
plan size and makes subtask ids unique.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from shipspec.prompts.schemas import PlannedSubtask
from shipspec.workflows.productionalize.state import SUBTASK_PENDING

MAX_SUBTASKS = 10

BASELINE_CATEGORIES = [
    "security",
    "soc2",
    "code-quality",
    "dependencies",
    "testing",
    "configuration",
]


@dataclass
class CategoryDefault:
    category: str
    source: str
    query: str


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def required_categories(
    signals: Mapping[str, Any] | None,
    user_context: Mapping[str, Any] | None,
    has_sast_results: bool,
) -> list[CategoryDefault]:
    """Baseline categories followed by the signal- and user-driven ones."""
    signals = signals or {}
    languages = ", ".join(signals.get("detected_languages") or []) or "this stack"
    scan_or_code = "scan" if has_sast_results else "code"

    required = [
        CategoryDefault(
            "security",
            scan_or_code,
            "Find authentication, authorization, injection and secret-handling weaknesses",
        ),
        CategoryDefault(
            "soc2",
            "web",
            f"SOC 2 security and availability controls relevant to {languages} services",
        ),
        CategoryDefault(
            "code-quality", "code", "Assess error handling, logging and maintainability hotspots"
        ),
        CategoryDefault(
            "dependencies",
            scan_or_code,
            "Identify outdated or vulnerable dependencies and missing lockfiles",
        ),
        CategoryDefault(
            "testing", "code", "Evaluate test coverage of critical paths and test infrastructure"
        ),
        CategoryDefault(
            "configuration",
            "code",
            "Review configuration management, environment handling and defaults",
        ),
    ]

    if signals.get("has_docker"):
        required.append(
            CategoryDefault(
                "container-security",
                "code",
                "Review Dockerfiles for base image pinning, non-root users and image size",
            )
        )
    if signals.get("has_iac"):
        tool = signals.get("iac_tool") or "infrastructure-as-code"
        required.append(
            CategoryDefault(
                "infrastructure-as-code",
                "code",
                f"Review {tool} definitions for public exposure, encryption and least privilege",
            )
        )
    if signals.get("has_ci"):
        platform = signals.get("ci_platform") or "CI"
        required.append(
            CategoryDefault(
                "ci-cd",
                "code",
                f"Review the {platform} pipeline for test gates, secret usage and deploy safety",
            )
        )
    else:
        required.append(
            CategoryDefault(
                "ci-cd",
                "web",
                f"Recommended CI/CD pipeline setup for {languages} projects",
            )
        )
    if signals.get("has_env_example"):
        required.append(
            CategoryDefault(
                "secrets-management",
                scan_or_code,
                "Check how secrets are loaded and whether any are committed to the repository",
            )
        )

    known = {r.category for r in required}
    for raw in (user_context or {}).get("priority_categories") or []:
        category = _slug(raw)
        if category and category not in known:
            known.add(category)
            required.append(
                CategoryDefault(category, "code", f"Analyze production readiness for {raw}")
            )

    return required


def _new_subtask(subtask_id: str, category: str, query: str, source: str, rationale: str) -> dict:
    return {
        "id": subtask_id,
        "category": category,
        "query": query,
        "source": source,
        "rationale": rationale,
        "status": SUBTASK_PENDING,
        "result": None,
        "confidence": None,
        "clarifying_questions": [],
        "diagnostic": None,
    }


def merge_plan(
    planned: list[PlannedSubtask],
    required: list[CategoryDefault],
    max_subtasks: int = MAX_SUBTASKS,
) -> list[dict]:
    """
    Combine the model's plan with the required categories.

    Required categories come first (the model's subtask for the category when
    it proposed one, a default otherwise), then any extra model subtasks,
    until ``max_subtasks`` is reached.
    """
    by_category: dict[str, list[PlannedSubtask]] = {}
    for subtask in planned:
        by_category.setdefault(_slug(subtask.category), []).append(subtask)

    selected: list[tuple[PlannedSubtask | None, CategoryDefault | None]] = []
    for default in required:
        proposals = by_category.get(default.category)
        if proposals:
            selected.append((proposals.pop(0), None))
        else:
            selected.append((None, default))
    for proposals in by_category.values():
        selected.extend((p, None) for p in proposals)

    plan: list[dict] = []
    used_ids: set[str] = set()
    for proposal, default in selected[:max_subtasks]:
        if proposal is not None:
            base_id = _slug(proposal.id) or _slug(proposal.category)
            category, query = _slug(proposal.category), proposal.query
            source, rationale = proposal.source, proposal.rationale
        else:
            base_id = default.category
            category, query, source = default.category, default.query, default.source
            rationale = "required category"

        subtask_id = base_id
        n = 2
        while subtask_id in used_ids:
            subtask_id = f"{base_id}-{n}"
            n += 1
        used_ids.add(subtask_id)
        plan.append(_new_subtask(subtask_id, category, query, source, rationale))

    return plan
