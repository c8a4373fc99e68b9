"""State schema for the planning workflow."""

from shipspec.graph import Reducer, StateField, StateSchema

PHASE_CLARIFYING = "clarifying"
PHASE_PRD_REVIEW = "prd_review"
PHASE_SPEC_REVIEW = "spec_review"
PHASE_COMPLETE = "complete"

planning_state = StateSchema(
    [
        StateField(
            "initial_idea", default="", description="The user's idea, as typed", required=True
        ),
        StateField("phase", default=PHASE_CLARIFYING),
        StateField("signals", description="ProjectSignals dump, or None if unavailable"),
        StateField("code_context", default=""),
        # Clarification
        StateField(
            "clarification_history",
            Reducer.APPEND,
            description="[{question, answer}] in the order they were asked",
        ),
        StateField("clarification_complete", default=False),
        StateField("pending_questions", default_factory=list),
        # Documents awaiting review
        StateField("pending_prd", default=""),
        StateField("pending_tech_spec", default=""),
        # Unapproved drafts kept as the base for the next revision
        StateField("prd_revision_base", default=""),
        StateField("tech_spec_revision_base", default=""),
        # Approved documents
        StateField("prd", default=""),
        StateField("tech_spec", default=""),
        StateField("task_prompts", default=""),
        StateField("user_feedback", default=""),
        StateField("diagnostics", Reducer.CONCAT_TEXT),
    ]
)
