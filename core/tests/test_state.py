"""Tests for state fields and reducers."""

import pytest

from shipspec.errors import GraphConfigurationError
from shipspec.graph import Reducer, StateField, StateSchema, apply_reducer


def make_schema() -> StateSchema:
    return StateSchema(
        [
            StateField("query", default=""),
            StateField("findings", Reducer.APPEND),
            StateField("diagnostics", Reducer.CONCAT_TEXT),
            StateField("subtasks", Reducer.MERGE_BY_ID),
            StateField("questions", default_factory=list),
        ]
    )


class TestReducers:
    def test_replace_is_last_write_wins(self):
        assert apply_reducer(Reducer.REPLACE, "f", "old", "new") == "new"

    def test_append_preserves_order(self):
        assert apply_reducer(Reducer.APPEND, "f", [1, 2], [3]) == [1, 2, 3]

    def test_append_to_missing_value(self):
        assert apply_reducer(Reducer.APPEND, "f", None, ["a"]) == ["a"]

    def test_append_rejects_non_list(self):
        with pytest.raises(GraphConfigurationError, match="list reducer"):
            apply_reducer(Reducer.APPEND, "f", [], "oops")

    def test_concat_text_joins_with_newline(self):
        assert apply_reducer(Reducer.CONCAT_TEXT, "f", "a", "b") == "a\nb"
        assert apply_reducer(Reducer.CONCAT_TEXT, "f", "", "b") == "b"

    def test_concat_text_ignores_empty_update(self):
        assert apply_reducer(Reducer.CONCAT_TEXT, "f", "a", "") == "a"
        assert apply_reducer(Reducer.CONCAT_TEXT, "f", "a", None) == "a"

    def test_merge_by_id_upserts_keeping_first_seen_order(self):
        current = [{"id": "a", "v": 1}, {"id": "b", "v": 1}]
        merged = apply_reducer(Reducer.MERGE_BY_ID, "f", current, [{"id": "a", "v": 2}])
        assert merged == [{"id": "a", "v": 2}, {"id": "b", "v": 1}]

    def test_merge_by_id_requires_ids(self):
        with pytest.raises(GraphConfigurationError, match="without one"):
            apply_reducer(Reducer.MERGE_BY_ID, "f", [], [{"name": "x"}])

    def test_inputs_are_not_mutated(self):
        current = [1]
        apply_reducer(Reducer.APPEND, "f", current, [2])
        assert current == [1]


class TestStateSchema:
    def test_initial_state_defaults(self):
        state = make_schema().initial_state()
        assert state == {
            "query": "",
            "findings": [],
            "diagnostics": "",
            "subtasks": [],
            "questions": [],
        }

    def test_default_factory_is_fresh_per_state(self):
        schema = make_schema()
        first = schema.initial_state()
        first["questions"].append("q")
        assert schema.initial_state()["questions"] == []

    def test_duplicate_field_rejected(self):
        with pytest.raises(GraphConfigurationError, match="Duplicate"):
            StateSchema([StateField("a"), StateField("a")])

    def test_merge_applies_each_reducer(self):
        schema = make_schema()
        state = schema.initial_state()
        state = schema.merge(state, {"findings": [{"id": 1}], "diagnostics": "one"})
        state = schema.merge(state, {"findings": [{"id": 2}], "diagnostics": "two"})
        assert state["findings"] == [{"id": 1}, {"id": 2}]
        assert state["diagnostics"] == "one\ntwo"

    def test_merge_rejects_undeclared_fields(self):
        schema = make_schema()
        with pytest.raises(GraphConfigurationError, match="undeclared") as exc_info:
            schema.merge(schema.initial_state(), {"bogus": 1}, source="node_a")
        assert "node_a" in str(exc_info.value)

    def test_merge_does_not_alias_update_values(self):
        schema = make_schema()
        update = {"findings": [{"id": 1}]}
        state = schema.merge(schema.initial_state(), update)
        update["findings"][0]["id"] = 99
        assert state["findings"] == [{"id": 1}]

    def test_complete_fills_missing_and_drops_unknown(self):
        schema = make_schema()
        full = schema.complete({"query": "q", "stale": True})
        assert full["query"] == "q"
        assert full["findings"] == []
        assert "stale" not in full

    def test_missing_required_flags_absent_and_empty_values(self):
        schema = StateSchema(
            [
                StateField("query", default="", required=True),
                StateField("interactive", default=True, required=True),
                StateField("notes", default=""),
            ]
        )
        assert schema.missing_required({"query": "", "notes": ""}) == ["query", "interactive"]
        assert schema.missing_required({"query": "q", "interactive": False}) == []

    def test_view_is_read_only(self):
        view = StateSchema.view({"query": "q"})
        with pytest.raises(TypeError):
            view["query"] = "changed"
