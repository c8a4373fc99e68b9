"""
State Model - Field-reducer based workflow state.

A workflow's state is a flat dict of named fields. Each field declares a
Reducer that is the only way a node's output is combined with the existing
value:

- replace: last write wins
- append: list items are concatenated, order preserved
- concat_text: strings are joined with a newline
- merge_by_id: list of records upserted by their "id" key (first-seen order kept)

Nodes never receive the mutable state; they get a read-only view and return a
partial dict, which StateSchema.merge folds in.
"""

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from shipspec.errors import GraphConfigurationError


class Reducer(StrEnum):
    """How a field combines an update with its current value."""

    REPLACE = "replace"
    APPEND = "append"
    CONCAT_TEXT = "concat_text"
    MERGE_BY_ID = "merge_by_id"


@dataclass
class StateField:
    """A named state field with a fixed reducer and a default."""

    name: str
    reducer: Reducer = Reducer.REPLACE
    default: Any = None
    default_factory: Callable[[], Any] | None = None
    description: str = ""
    required: bool = False

    def initial_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.reducer in (Reducer.APPEND, Reducer.MERGE_BY_ID) and self.default is None:
            return []
        if self.reducer == Reducer.CONCAT_TEXT and self.default is None:
            return ""
        return copy.deepcopy(self.default)


def _as_list(field_name: str, value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise GraphConfigurationError(
        f"Field '{field_name}' uses a list reducer but received {type(value).__name__}"
    )


def apply_reducer(reducer: Reducer, field_name: str, current: Any, update: Any) -> Any:
    """Combine ``update`` into ``current`` using ``reducer``. Inputs are not mutated."""
    if reducer == Reducer.REPLACE:
        return update

    if reducer == Reducer.APPEND:
        return list(current or []) + _as_list(field_name, update)

    if reducer == Reducer.CONCAT_TEXT:
        if update is None or update == "":
            return current or ""
        if not isinstance(update, str):
            raise GraphConfigurationError(
                f"Field '{field_name}' concatenates text but received {type(update).__name__}"
            )
        return f"{current}\n{update}" if current else update

    if reducer == Reducer.MERGE_BY_ID:
        merged: dict[Any, Any] = {}
        for item in list(current or []) + _as_list(field_name, update):
            if not isinstance(item, Mapping) or "id" not in item:
                raise GraphConfigurationError(
                    f"Field '{field_name}' merges records by id but received an item without one"
                )
            merged[item["id"]] = item
        return list(merged.values())

    raise GraphConfigurationError(f"Unknown reducer '{reducer}' for field '{field_name}'")


class StateSchema:
    """
    The set of fields a workflow's state may contain.

    Example:
        schema = StateSchema(
            [
                StateField("query"),
                StateField("findings", Reducer.APPEND),
                StateField("diagnostics", Reducer.CONCAT_TEXT),
            ]
        )
        state = schema.initial_state()
        state = schema.merge(state, {"findings": [{"id": "f1"}]})
    """

    def __init__(self, fields: list[StateField]):
        self.fields: dict[str, StateField] = {}
        for f in fields:
            if f.name in self.fields:
                raise GraphConfigurationError(f"Duplicate state field '{f.name}'")
            self.fields[f.name] = f

    def __contains__(self, name: str) -> bool:
        return name in self.fields

    def initial_state(self) -> dict[str, Any]:
        return {name: f.initial_value() for name, f in self.fields.items()}

    def merge(
        self,
        state: Mapping[str, Any],
        update: Mapping[str, Any] | None,
        thread_id: str | None = None,
        source: str = "",
    ) -> dict[str, Any]:
        """
        Return a new state with ``update`` folded in through each field's reducer.

        Raises:
            GraphConfigurationError: If the update names a field the schema does not declare
        """
        if not update:
            return dict(state)

        unknown = [key for key in update if key not in self.fields]
        if unknown:
            origin = f" from '{source}'" if source else ""
            raise GraphConfigurationError(
                f"Update{origin} writes undeclared state fields: {sorted(unknown)}",
                thread_id=thread_id,
            )

        new_state = dict(state)
        for key, value in update.items():
            f = self.fields[key]
            new_state[key] = apply_reducer(
                f.reducer, key, new_state.get(key, f.initial_value()), copy.deepcopy(value)
            )
        return new_state

    def complete(self, state: Mapping[str, Any]) -> dict[str, Any]:
        """Fill in defaults for fields missing from a loaded state."""
        full = self.initial_state()
        full.update({k: v for k, v in state.items() if k in self.fields})
        return full

    def missing_required(self, state: Mapping[str, Any]) -> list[str]:
        """Required fields that are absent, None or empty in a saved state."""
        return [
            name
            for name, field in self.fields.items()
            if field.required and state.get(name) in (None, "")
        ]

    @staticmethod
    def view(state: Mapping[str, Any]) -> Mapping[str, Any]:
        """Read-only view handed to nodes and routers."""
        return MappingProxyType(copy.deepcopy(dict(state)))
