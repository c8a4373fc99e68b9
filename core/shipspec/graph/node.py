"""
Node Protocol - The units of work in a graph.

A node is an async callable that receives a NodeContext and returns a partial
state update (a dict of field -> value). The executor merges that update
through the state reducers; a node never mutates state directly.

Nodes must be safe to re-run from the top: a resumed thread re-enters the
node it was suspended in.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from shipspec.errors import GraphConfigurationError
from shipspec.graph.interrupt import NodeInterrupt
from shipspec.schemas.checkpoint import InterruptSignal

NO_RESUME = object()


@dataclass
class NodeContext:
    """
    Everything a node sees while it runs.

    Attributes:
        thread_id: Thread being executed
        node_id: ID of the running node
        state: Read-only view of the current state
        item: The work item for fan-out workers (None for main-line nodes)
        allow_interrupt: False inside fan-out workers
    """

    thread_id: str
    node_id: str
    state: Mapping[str, Any]
    item: Any = None
    allow_interrupt: bool = True
    _resume_value: Any = field(default=NO_RESUME, repr=False)

    @property
    def is_resuming(self) -> bool:
        """True if a resume value is waiting to be returned by interrupt()."""
        return self._resume_value is not NO_RESUME

    def interrupt(self, type: str, payload: dict[str, Any] | None = None) -> Any:
        """
        Suspend the thread for external input, or return the input on resume.

        Args:
            type: Interrupt discriminator consumers switch on
            payload: Data the human-facing layer renders

        Returns:
            The resume value, when the thread is being resumed

        Raises:
            NodeInterrupt: On first entry; the executor turns it into a checkpoint
            GraphConfigurationError: If called from a fan-out worker
        """
        if not self.allow_interrupt:
            raise GraphConfigurationError(
                f"Node '{self.node_id}' runs as a parallel worker and cannot interrupt; "
                "attach clarifying questions to its result instead",
                thread_id=self.thread_id,
            )
        if self._resume_value is not NO_RESUME:
            value = self._resume_value
            self._resume_value = NO_RESUME
            return value
        raise NodeInterrupt(InterruptSignal(type=type, payload=payload or {}, node_id=self.node_id))


class NodeProtocol(ABC):
    """
    The interface all node implementations follow.

    Example:
        class Greeter(NodeProtocol):
            async def execute(self, ctx: NodeContext) -> dict[str, Any]:
                return {"greeting": f"hello {ctx.state['name']}"}
    """

    @abstractmethod
    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        """
        Run the node.

        Args:
            ctx: Execution context with the read-only state

        Returns:
            Partial state update
        """


NodeFunction = Callable[[NodeContext], Awaitable[dict[str, Any]] | dict[str, Any]]


class FunctionNode(NodeProtocol):
    """Adapts a plain (sync or async) function into a node."""

    def __init__(self, func: NodeFunction):
        self.func = func

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        result = self.func(ctx)
        if inspect.isawaitable(result):
            result = await result
        return result or {}


def as_node(impl: NodeProtocol | NodeFunction) -> NodeProtocol:
    """Wrap a function as a FunctionNode; pass node objects through."""
    if isinstance(impl, NodeProtocol):
        return impl
    if callable(impl):
        return FunctionNode(impl)
    raise GraphConfigurationError(f"Node implementation {impl!r} is not callable")


class FanOutNode(NodeProtocol):
    """
    Runs one worker per item concurrently and joins before the next node.

    The executor drives fan-out nodes itself so that each worker's update is
    merged through the reducers as it completes. Workers get a NodeContext with
    ``item`` set and ``allow_interrupt=False``.

    Args:
        items: Selects the work items from the pre-fan-out state
        worker: Node run once per item
        on_error: Builds the update recorded for an item whose worker raised or
            timed out. If None, worker failures fail the whole node.
        max_concurrency: Upper bound on workers in flight
        timeout_seconds: Per-worker time limit (None for no limit)
        item_id: Extracts an item's identity for logging
    """

    def __init__(
        self,
        items: Callable[[Mapping[str, Any]], list[Any]],
        worker: NodeProtocol | NodeFunction,
        on_error: Callable[[Any, BaseException], dict[str, Any]] | None = None,
        max_concurrency: int = 4,
        timeout_seconds: float | None = None,
        item_id: Callable[[Any], str] | None = None,
    ):
        if max_concurrency < 1:
            raise GraphConfigurationError("max_concurrency must be at least 1")
        self.items = items
        self.worker = as_node(worker)
        self.on_error = on_error
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.item_id = item_id or _default_item_id

    async def execute(self, ctx: NodeContext) -> dict[str, Any]:
        raise GraphConfigurationError(
            f"Fan-out node '{ctx.node_id}' must be run by GraphExecutor",
            thread_id=ctx.thread_id,
        )


def _default_item_id(item: Any) -> str:
    if isinstance(item, Mapping) and "id" in item:
        return str(item["id"])
    return repr(item)[:40]


class NodeSpec(BaseModel):
    """
    Declarative description of a node in a graph.

    The implementation lives in the executor's node registry under the same id.
    """

    id: str
    name: str = ""
    description: str = ""
    interruptible: bool = Field(
        default=False, description="Node may suspend the thread via ctx.interrupt()"
    )

    model_config = {"extra": "allow"}

    @property
    def display_name(self) -> str:
        return self.name or self.id
