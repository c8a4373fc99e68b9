"""State schema for the productionalize workflow."""

from shipspec.graph import Reducer, StateField, StateSchema

SUBTASK_PENDING = "pending"
SUBTASK_COMPLETE = "complete"

productionalize_state = StateSchema(
    [
        StateField("user_query", default=""),
        StateField("signals", description="ProjectSignals dump"),
        StateField("interactive_mode", default=True, required=True),
        # Interview
        StateField("user_context", description="UserAnalysisContext dump"),
        StateField("interview_complete", default=False),
        StateField("pending_interview_questions", default_factory=list),
        # Evidence gathered before planning
        StateField("research_digest", default=""),
        StateField("sast_results", Reducer.APPEND, description="SASTFinding dumps"),
        # Fan-out
        StateField(
            "subtasks",
            Reducer.MERGE_BY_ID,
            description="Planner writes pending records; each worker upserts its completed one",
        ),
        StateField("findings", Reducer.APPEND, description="Finding dumps tagged with subtask_id"),
        # Report review
        StateField("final_report", default=""),
        StateField("report_approved", default=False),
        StateField("report_feedback", default=""),
        StateField("task_prompts", default=""),
        StateField("diagnostics", Reducer.CONCAT_TEXT),
    ]
)
