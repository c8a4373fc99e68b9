"""
End-to-end tests for the planning workflow with a scripted LLM.

Covers the clarification loop, PRD/tech-spec review cycles and the
guarantee that each review cycle costs exactly one generation.
"""

import pytest

from shipspec.errors import CheckpointCorruptedError, InvalidResumeError, StructuredOutputError
from shipspec.graph import expect_interrupt
from shipspec.llm import MockLLMProvider
from shipspec.prompts.schemas import ClarificationOutput, PromptsOutput, TaskPrompt
from shipspec.schemas.checkpoint import ThreadStatus
from shipspec.storage import FileCheckpointStore
from shipspec.workflows.planning import INTERRUPT_TYPES, create_planning_workflow

IDEA = "Add dark mode to the login page"
QUESTIONS = ["Which pages need dark mode?", "Should the preference persist?"]

TASKS = PromptsOutput(
    reasoning="two steps",
    prompts=[
        TaskPrompt(id=1, prompt="Add a theme context"),
        TaskPrompt(id=2, prompt="Persist the preference"),
    ],
)


def user_prompt(llm: MockLLMProvider, call: int) -> str:
    return llm.calls[call]["messages"][-1]["content"]


@pytest.fixture
def llm() -> MockLLMProvider:
    return MockLLMProvider(
        [
            ClarificationOutput(satisfied=False, follow_up_questions=QUESTIONS),
            ClarificationOutput(satisfied=True, reasoning="clear now"),
            "# PRD v1",
            "# PRD v2",
            "# Tech Spec",
            TASKS,
        ]
    )


@pytest.fixture
def app(llm, project_dir, retriever, runtime_config):
    return create_planning_workflow(llm, project_dir, retriever, runtime_config)


@pytest.mark.asyncio
async def test_full_planning_session(app, llm, retriever):
    result = await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")

    # Clarification questions are asked exactly as generated
    assert result.interrupted
    assert expect_interrupt(result.interrupt, INTERRUPT_TYPES).type == "clarification"
    assert result.interrupt.payload == {"questions": QUESTIONS}
    assert result.path == ["context_gatherer", "clarifier"]
    assert result.state["signals"]["package_manager"] == "npm"
    assert "src/auth.ts" in result.state["code_context"]
    assert retriever.queries == [IDEA]
    assert llm.call_count == 1

    result = await app.resume({"0": "All of them", "1": "Yes"}, thread_id="plan-1")

    assert result.interrupt.type == "prd_review"
    assert result.interrupt.payload["document"] == "# PRD v1"
    assert result.state["clarification_history"] == [
        {"question": QUESTIONS[0], "answer": "All of them"},
        {"question": QUESTIONS[1], "answer": "Yes"},
    ]
    assert result.state["pending_questions"] == []
    assert "**A:** All of them" in user_prompt(llm, 1)
    assert llm.call_count == 3

    result = await app.resume("Add an accessibility section", thread_id="plan-1")

    assert result.interrupt.type == "prd_review"
    assert result.interrupt.payload["document"] == "# PRD v2"
    revision_prompt = user_prompt(llm, 3)
    assert "## Previous PRD (needs revision)\n# PRD v1" in revision_prompt
    assert "## Reviewer Feedback\nAdd an accessibility section" in revision_prompt
    assert result.state["prd"] == ""

    result = await app.resume("  Approve ", thread_id="plan-1")

    assert result.interrupt.type == "spec_review"
    assert result.interrupt.payload["document"] == "# Tech Spec"
    assert result.state["prd"] == "# PRD v2"
    assert result.state["prd_revision_base"] == ""
    assert "## Approved PRD\n# PRD v2" in user_prompt(llm, 4)

    result = await app.resume("approve", thread_id="plan-1")

    assert result.completed
    assert result.state["tech_spec"] == "# Tech Spec"
    assert result.state["phase"] == "complete"
    assert result.state["task_prompts"] == (
        "### Task 1:\n```\nAdd a theme context\n```\n\n"
        "### Task 2:\n```\nPersist the preference\n```"
    )
    assert llm.call_count == 6


@pytest.mark.asyncio
async def test_resuming_a_review_never_regenerates(app, llm):
    await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")
    result = await app.resume({"0": "All", "1": "Yes"}, thread_id="plan-1")
    assert result.interrupt.type == "prd_review"
    calls = llm.call_count

    for bad in ["", "   ", None, {"verdict": "approve"}]:
        with pytest.raises(InvalidResumeError):
            await app.resume(bad, thread_id="plan-1")

    assert llm.call_count == calls
    checkpoint = await app.get_state("plan-1")
    assert checkpoint.status == ThreadStatus.INTERRUPTED
    assert checkpoint.pending_interrupt.payload["document"] == "# PRD v1"


@pytest.mark.asyncio
async def test_approved_document_is_the_reviewed_document(app, llm):
    await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")
    reviewed = await app.resume({"0": "All", "1": "Yes"}, thread_id="plan-1")

    result = await app.resume("approve", thread_id="plan-1")

    assert result.state["prd"] == reviewed.interrupt.payload["document"]


@pytest.mark.asyncio
async def test_clarification_answers_must_be_a_mapping(app):
    await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")

    with pytest.raises(InvalidResumeError, match="answers"):
        await app.resume("All of them, yes", thread_id="plan-1")

    result = await app.resume({"0": "All"}, thread_id="plan-1")
    assert result.state["clarification_history"][1] == {"question": QUESTIONS[1], "answer": ""}


@pytest.mark.asyncio
async def test_satisfied_immediately_goes_straight_to_prd(project_dir, runtime_config):
    llm = MockLLMProvider([ClarificationOutput(satisfied=True), "# PRD"])
    app = create_planning_workflow(llm, project_dir, config=runtime_config)

    result = await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")

    assert result.interrupt.type == "prd_review"
    assert result.path == ["context_gatherer", "clarifier", "prd_generator"]
    assert result.state["code_context"] == ""


@pytest.mark.asyncio
async def test_unsatisfied_without_questions_proceeds_with_diagnostic(project_dir, runtime_config):
    llm = MockLLMProvider([ClarificationOutput(satisfied=False), "# PRD"])
    app = create_planning_workflow(llm, project_dir, config=runtime_config)

    result = await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")

    assert result.interrupt.type == "prd_review"
    assert "asked no questions" in result.state["diagnostics"]


@pytest.mark.asyncio
async def test_missing_project_path_is_recorded(tmp_path, runtime_config):
    llm = MockLLMProvider([ClarificationOutput(satisfied=True), "# PRD"])
    app = create_planning_workflow(llm, tmp_path / "gone", config=runtime_config)

    result = await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")

    assert result.state["signals"] is None
    assert "project signals unavailable" in result.state["diagnostics"]


@pytest.mark.asyncio
async def test_malformed_structured_output_is_not_swallowed(project_dir, runtime_config):
    llm = MockLLMProvider(['{"satisfied": "perhaps"}'])
    app = create_planning_workflow(llm, project_dir, config=runtime_config)

    with pytest.raises(StructuredOutputError):
        await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")


@pytest.mark.asyncio
async def test_session_survives_a_restart(llm, project_dir, retriever, runtime_config, tmp_path):
    store_dir = tmp_path / "store"
    first = create_planning_workflow(
        llm, project_dir, retriever, runtime_config, FileCheckpointStore(store_dir)
    )
    await first.invoke({"initial_idea": IDEA}, thread_id="plan-1")

    second = create_planning_workflow(
        llm, project_dir, retriever, runtime_config, FileCheckpointStore(store_dir)
    )
    result = await second.resume({"0": "All", "1": "Yes"}, thread_id="plan-1")

    assert result.interrupt.type == "prd_review"
    assert result.interrupt.payload["document"] == "# PRD v1"


@pytest.mark.asyncio
async def test_resume_refuses_a_saved_session_without_an_idea(
    llm, project_dir, retriever, runtime_config, tmp_path
):
    store = FileCheckpointStore(tmp_path / "store")
    app = create_planning_workflow(llm, project_dir, retriever, runtime_config, store)
    await app.invoke({"initial_idea": IDEA}, thread_id="plan-1")
    saved = await store.load("plan-1")
    await store.save(saved.model_copy(update={"state": {**saved.state, "initial_idea": ""}}))
    calls_before = llm.call_count

    with pytest.raises(CheckpointCorruptedError, match="required field 'initial_idea'"):
        await app.resume({"0": "All", "1": "Yes"}, thread_id="plan-1")

    assert llm.call_count == calls_before
