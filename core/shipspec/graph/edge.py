"""
Edge Protocol - How nodes connect in a graph.

Edge types:
- always: go to ``target`` after the source node completes
- conditional: call ``router(state)`` on the post-merge state and go to the
  node it names

Routers must be total: returning a name that is not a node in the graph is a
configuration error, never a silent stop. Self-loops are legal and are how
"ask again" and "regenerate" cycles are built.
"""

from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from shipspec.errors import GraphConfigurationError

Router = Callable[[Mapping[str, Any]], str]


class EdgeCondition(StrEnum):
    """When and where an edge leads."""

    ALWAYS = "always"  # Fixed target
    CONDITIONAL = "conditional"  # Target chosen by a router function


class EdgeSpec(BaseModel):
    """
    Specification for an edge leaving a node.

    Examples:
        # Unconditional
        EdgeSpec(id="signals-to-interviewer", source="gather_signals", target="interviewer")

        # Conditional self-loop until a field is populated
        EdgeSpec(
            id="prd-route",
            source="prd_generator",
            condition=EdgeCondition.CONDITIONAL,
            router=lambda s: "spec_generator" if s["prd"] else "prd_generator",
            targets=["prd_generator", "spec_generator"],
        )
    """

    id: str
    source: str = Field(description="Source node ID")
    target: str | None = Field(default=None, description="Target node ID for ALWAYS edges")

    condition: EdgeCondition = EdgeCondition.ALWAYS
    router: Router | None = Field(
        default=None,
        exclude=True,
        description="Function of the post-merge state returning the next node ID",
    )
    targets: list[str] = Field(
        default_factory=list,
        description="Node IDs a CONDITIONAL router may return (used for validation)",
    )

    description: str = ""

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def _check_shape(self) -> "EdgeSpec":
        if self.condition == EdgeCondition.ALWAYS and not self.target:
            raise ValueError(f"Edge '{self.id}' is unconditional but has no target")
        if self.condition == EdgeCondition.CONDITIONAL and self.router is None:
            raise ValueError(f"Edge '{self.id}' is conditional but has no router")
        return self

    def possible_targets(self) -> list[str]:
        if self.condition == EdgeCondition.ALWAYS:
            return [self.target] if self.target else []
        return list(self.targets)

    def resolve(self, state: Mapping[str, Any]) -> Any:
        """Return the raw next-node value for this edge (validated by the graph)."""
        if self.condition == EdgeCondition.ALWAYS:
            return self.target
        return self.router(state)


class GraphSpec(BaseModel):
    """
    Complete specification of a workflow graph.

    Holds the node specs, edges, entry and terminal nodes, and the state
    schema that defines field reducers. Node implementations are supplied
    separately to the executor.
    """

    id: str
    description: str = ""

    entry_node: str = Field(description="ID of the first node to execute")
    terminal_nodes: list[str] = Field(
        default_factory=list, description="IDs of nodes that end execution after they run"
    )

    nodes: list[Any] = Field(default_factory=list, description="NodeSpec list")
    edges: list[EdgeSpec] = Field(default_factory=list)

    state_schema: Any = Field(description="StateSchema with the field reducers")

    max_steps: int = Field(default=100, description="Maximum node executions per invocation")

    model_config = {"extra": "allow"}

    def get_node(self, node_id: str) -> Any | None:
        """Get a node spec by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.source == node_id]

    def next_node(
        self,
        node_id: str,
        state: Mapping[str, Any],
        thread_id: str | None = None,
    ) -> str:
        """
        Pick the node that runs after ``node_id``.

        Raises:
            GraphConfigurationError: If there is no edge, or the edge leads to
                an unknown node
        """
        edges = self.get_outgoing_edges(node_id)
        if not edges:
            raise GraphConfigurationError(
                f"Node '{node_id}' is not terminal and has no outgoing edge",
                thread_id=thread_id,
            )
        edge = edges[0]
        target = edge.resolve(state)
        if not isinstance(target, str) or self.get_node(target) is None:
            raise GraphConfigurationError(
                f"Edge '{edge.id}' from '{node_id}' routed to unknown node {target!r}",
                thread_id=thread_id,
            )
        if edge.targets and target not in edge.targets:
            raise GraphConfigurationError(
                f"Edge '{edge.id}' from '{node_id}' routed to '{target}', "
                f"which is not one of its declared targets {edge.targets}",
                thread_id=thread_id,
            )
        return target

    def validate(self) -> list[str]:
        """Validate the graph structure. Returns a list of error messages."""
        errors = []

        node_ids = [n.id for n in self.nodes]
        duplicates = {n for n in node_ids if node_ids.count(n) > 1}
        for dup in sorted(duplicates):
            errors.append(f"Duplicate node ID '{dup}'")

        if not self.get_node(self.entry_node):
            errors.append(f"Entry node '{self.entry_node}' not found")

        for term in self.terminal_nodes:
            if not self.get_node(term):
                errors.append(f"Terminal node '{term}' not found")

        for edge in self.edges:
            if not self.get_node(edge.source):
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.condition == EdgeCondition.CONDITIONAL and not edge.targets:
                errors.append(f"Conditional edge '{edge.id}' declares no targets")
            for target in edge.possible_targets():
                if not self.get_node(target):
                    errors.append(f"Edge '{edge.id}' references missing target '{target}'")

        for node in self.nodes:
            outgoing = self.get_outgoing_edges(node.id)
            if node.id in self.terminal_nodes:
                if outgoing:
                    errors.append(f"Terminal node '{node.id}' has outgoing edges")
                continue
            if not outgoing:
                errors.append(f"Node '{node.id}' is not terminal and has no outgoing edge")
            elif len(outgoing) > 1:
                errors.append(
                    f"Node '{node.id}' has {len(outgoing)} outgoing edges; "
                    "use one conditional edge to branch"
                )

        reachable = set()
        to_visit = [self.entry_node]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in self.get_outgoing_edges(current):
                to_visit.extend(edge.possible_targets())

        for node in self.nodes:
            if node.id not in reachable:
                errors.append(f"Node '{node.id}' is unreachable from entry")

        if not self.terminal_nodes:
            errors.append("Graph has no terminal nodes")

        return errors
