"""
Graph Executor - Runs workflow graphs with checkpointed suspend/resume.

The executor:
1. Loads the thread's checkpoint (or seeds state from the input)
2. Runs the current node against a read-only view of the state
3. Merges the node's partial update through the field reducers
4. Picks the next node from the outgoing edge (routers see post-merge state)
5. Saves a checkpoint, and repeats until a terminal node or an interrupt

A node that interrupts leaves state untouched; the checkpoint records the
pending signal and the thread waits for resume(). A node whose collaborator
raises leaves state untouched as well, so the same call can be retried.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from shipspec.errors import (
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    GraphConfigurationError,
    NoPendingInterruptError,
    NodeExecutionError,
    ShipSpecError,
    ThreadSuspendedError,
)
from shipspec.graph.edge import GraphSpec
from shipspec.graph.interrupt import NodeInterrupt
from shipspec.graph.node import (
    NO_RESUME,
    FanOutNode,
    FunctionNode,
    NodeContext,
    NodeFunction,
    NodeProtocol,
    as_node,
)
from shipspec.graph.state import StateSchema
from shipspec.observability import set_trace_context
from shipspec.schemas.checkpoint import Checkpoint, InterruptSignal, ThreadStatus
from shipspec.storage.checkpoint_store import CheckpointStore, InMemoryCheckpointStore


@dataclass
class ExecutionResult:
    """Outcome of one invoke() or resume() call."""

    thread_id: str
    status: ThreadStatus
    state: dict[str, Any] = field(default_factory=dict)
    interrupt: InterruptSignal | None = None  # Set when the thread suspended
    path: list[str] = field(default_factory=list)  # Node IDs run during this call
    steps_executed: int = 0

    @property
    def completed(self) -> bool:
        return self.status == ThreadStatus.COMPLETED

    @property
    def interrupted(self) -> bool:
        return self.status == ThreadStatus.INTERRUPTED


@dataclass
class FanOutBranch:
    """Tracks a single worker in a fan-out."""

    item_id: str
    status: str = "pending"  # pending, running, completed, failed
    error: str | None = None
    latency_ms: int = 0


@dataclass
class ExecutorConfig:
    """Engine limits."""

    # Overrides GraphSpec.max_steps when set
    max_steps: int | None = None

    # Caps FanOutNode.max_concurrency across all graphs run by this executor
    fan_out_concurrency_limit: int | None = None

    # Per-worker time limit for fan-out nodes that do not set their own
    fan_out_timeout_seconds: float | None = None


class GraphExecutor:
    """
    Executes workflow graphs.

    Example:
        executor = GraphExecutor(checkpoint_store=FileCheckpointStore(path))
        app = executor.compile(graph, node_registry={"greet": greet})

        result = await app.invoke({"name": "Ada"}, thread_id="t-1")
        if result.interrupted:
            result = await app.resume("approve", thread_id="t-1")
    """

    def __init__(
        self,
        checkpoint_store: CheckpointStore | None = None,
        node_registry: dict[str, NodeProtocol | NodeFunction] | None = None,
        config: ExecutorConfig | None = None,
    ):
        """
        Initialize the executor.

        Args:
            checkpoint_store: Where thread checkpoints live (in-memory if omitted)
            node_registry: Node implementations by node ID, shared by every
                graph this executor compiles
            config: Engine limits
        """
        self.checkpoint_store = checkpoint_store or InMemoryCheckpointStore()
        self.node_registry: dict[str, NodeProtocol] = {
            node_id: as_node(impl) for node_id, impl in (node_registry or {}).items()
        }
        self.config = config or ExecutorConfig()
        self.logger = logging.getLogger(__name__)

    def register_node(self, node_id: str, implementation: NodeProtocol) -> None:
        """Register a custom node implementation."""
        self.node_registry[node_id] = implementation

    def register_function(self, node_id: str, func: NodeFunction) -> None:
        """Register a function as a node."""
        self.node_registry[node_id] = FunctionNode(func)

    def compile(
        self,
        graph: GraphSpec,
        node_registry: dict[str, NodeProtocol | NodeFunction] | None = None,
    ) -> "CompiledGraph":
        """
        Validate a graph against its implementations and return a runnable.

        Raises:
            GraphConfigurationError: If the graph structure is invalid or a
                node has no implementation
        """
        registry = dict(self.node_registry)
        registry.update({k: as_node(v) for k, v in (node_registry or {}).items()})

        errors = graph.validate()
        if not isinstance(graph.state_schema, StateSchema):
            errors.append("state_schema must be a StateSchema")
        for node in graph.nodes:
            impl = registry.get(node.id)
            if impl is None:
                errors.append(f"Node '{node.id}' has no implementation")
            elif isinstance(impl, FanOutNode) and getattr(node, "interruptible", False):
                errors.append(f"Fan-out node '{node.id}' cannot be interruptible")

        if errors:
            for err in errors:
                self.logger.error(f"   • {err}")
            raise GraphConfigurationError(
                f"Graph '{graph.id}' is invalid: " + "; ".join(errors)
            )

        return CompiledGraph(graph=graph, registry=registry, executor=self)

    async def run(
        self,
        graph: GraphSpec,
        registry: dict[str, NodeProtocol],
        thread_id: str,
        input_data: Mapping[str, Any] | None = None,
        resume_value: Any = NO_RESUME,
    ) -> ExecutionResult:
        """Drive a thread forward from its checkpoint. Used by CompiledGraph."""
        schema: StateSchema = graph.state_schema
        set_trace_context(thread_id=thread_id, graph_id=graph.id)

        checkpoint = await self.checkpoint_store.load(thread_id)
        resuming = resume_value is not NO_RESUME

        if resuming:
            if checkpoint is None:
                raise CheckpointNotFoundError(thread_id)
            if checkpoint.status != ThreadStatus.INTERRUPTED:
                raise NoPendingInterruptError(thread_id, checkpoint.status)
            state = self._restore_state(schema, checkpoint, thread_id)
            current_node = checkpoint.next_node
            path = list(checkpoint.execution_path)
            total_steps = checkpoint.step_count
            self.logger.info(
                f"🔄 Resuming thread at '{current_node}' "
                f"({checkpoint.pending_interrupt.type} interrupt)"
            )
        elif checkpoint is None:
            state = schema.merge(schema.initial_state(), input_data, thread_id, source="input")
            current_node = graph.entry_node
            path = []
            total_steps = 0
            self.logger.info(f"🚀 Starting thread on graph '{graph.id}'")
            self.logger.info(f"   Entry node: {graph.entry_node}")
            await self._save(
                graph, thread_id, state, ThreadStatus.RUNNING, None, current_node, path, 0
            )
        elif checkpoint.status == ThreadStatus.INTERRUPTED:
            raise ThreadSuspendedError(thread_id, checkpoint.pending_interrupt.type)
        elif checkpoint.status == ThreadStatus.RUNNING:
            state = schema.merge(
                self._restore_state(schema, checkpoint, thread_id),
                input_data,
                thread_id,
                source="input",
            )
            current_node = checkpoint.next_node
            path = list(checkpoint.execution_path)
            total_steps = checkpoint.step_count
            self.logger.info(f"🔄 Continuing unfinished thread from '{current_node}'")
        else:
            state = schema.merge(
                self._restore_state(schema, checkpoint, thread_id),
                input_data,
                thread_id,
                source="input",
            )
            current_node = graph.entry_node
            path = []
            total_steps = checkpoint.step_count
            self.logger.info(f"🚀 Starting a new pass over completed thread at '{current_node}'")

        if graph.get_node(current_node) is None:
            raise GraphConfigurationError(
                f"Checkpoint points at node '{current_node}', which is not in graph '{graph.id}'",
                thread_id=thread_id,
            )

        max_steps = self.config.max_steps or graph.max_steps
        steps = 0
        run_path: list[str] = []

        while True:
            if steps >= max_steps:
                raise GraphConfigurationError(
                    f"Exceeded {max_steps} steps without reaching a terminal node "
                    f"(last node: '{current_node}'); check for a routing cycle",
                    thread_id=thread_id,
                )

            node_spec = graph.get_node(current_node)
            impl = registry[current_node]
            set_trace_context(node_id=current_node)
            self.logger.info(f"▶ Step {total_steps + 1}: {node_spec.display_name}")

            try:
                if isinstance(impl, FanOutNode):
                    new_state = await self._execute_fan_out(
                        schema, node_spec, impl, state, thread_id
                    )
                else:
                    ctx = NodeContext(
                        thread_id=thread_id,
                        node_id=current_node,
                        state=schema.view(state),
                        _resume_value=resume_value,
                    )
                    update = await impl.execute(ctx)
                    if ctx.is_resuming:
                        self.logger.warning(
                            f"⚠ Node '{current_node}' did not consume its resume value"
                        )
                    new_state = schema.merge(state, update, thread_id, source=current_node)
            except NodeInterrupt as interrupt:
                signal = interrupt.signal
                await self._save(
                    graph,
                    thread_id,
                    state,
                    ThreadStatus.INTERRUPTED,
                    current_node,
                    current_node,
                    path,
                    total_steps,
                    pending_interrupt=signal,
                )
                self.logger.info(
                    f"⏸ Interrupted at '{current_node}' ({signal.type})",
                    extra={"interrupt_type": signal.type},
                )
                return ExecutionResult(
                    thread_id=thread_id,
                    status=ThreadStatus.INTERRUPTED,
                    state=state,
                    interrupt=signal,
                    path=run_path,
                    steps_executed=steps,
                )
            except ShipSpecError:
                raise
            except Exception as e:
                self.logger.error(f"   ✗ Node '{current_node}' failed: {e}")
                raise NodeExecutionError(current_node, e, thread_id=thread_id) from e

            resume_value = NO_RESUME
            state = new_state
            steps += 1
            total_steps += 1
            path.append(current_node)
            run_path.append(current_node)

            if current_node in graph.terminal_nodes:
                await self._save(
                    graph, thread_id, state, ThreadStatus.COMPLETED, current_node, None, path,
                    total_steps,
                )
                self.logger.info(f"✓ Reached terminal node: {node_spec.display_name}")
                self.logger.info(f"   Steps: {steps}")
                self.logger.info(f"   Path: {' → '.join(run_path)}")
                return ExecutionResult(
                    thread_id=thread_id,
                    status=ThreadStatus.COMPLETED,
                    state=state,
                    path=run_path,
                    steps_executed=steps,
                )

            next_node = graph.next_node(current_node, schema.view(state), thread_id=thread_id)
            if next_node == current_node:
                self.logger.info(f"   ↻ Re-entering {current_node}")
            else:
                self.logger.info(f"   → Next: {next_node}")

            await self._save(
                graph, thread_id, state, ThreadStatus.RUNNING, current_node, next_node, path,
                total_steps,
            )
            current_node = next_node

    @staticmethod
    def _restore_state(
        schema: StateSchema, checkpoint: Checkpoint, thread_id: str
    ) -> dict[str, Any]:
        missing = schema.missing_required(checkpoint.state)
        if missing:
            raise CheckpointCorruptedError(thread_id, f"required field '{missing[0]}' is empty")
        return schema.complete(checkpoint.state)

    async def _execute_fan_out(
        self,
        schema: StateSchema,
        node_spec: Any,
        fan_out: FanOutNode,
        state: dict[str, Any],
        thread_id: str,
    ) -> dict[str, Any]:
        """
        Run one worker per item with bounded concurrency, then merge.

        Every worker sees the same pre-fan-out state. Updates are merged in
        completion order; a worker that raises or times out is replaced by
        ``fan_out.on_error(item, exc)`` so the rest of the fan-out proceeds.

        Returns:
            State with all worker updates merged
        """
        view = schema.view(state)
        items = list(fan_out.items(view) or [])
        if not items:
            self.logger.info("   ⑂ Fan-out: no items, skipping")
            return dict(state)

        concurrency = fan_out.max_concurrency
        if self.config.fan_out_concurrency_limit:
            concurrency = min(concurrency, self.config.fan_out_concurrency_limit)
        semaphore = asyncio.Semaphore(concurrency)
        timeout_seconds = fan_out.timeout_seconds or self.config.fan_out_timeout_seconds

        branches = [FanOutBranch(item_id=fan_out.item_id(item)) for item in items]
        self.logger.info(
            f"   ⑂ Fan-out: {len(items)} workers (max {concurrency} concurrent)"
        )

        completed: list[tuple[FanOutBranch, dict[str, Any]]] = []

        async def execute_single_branch(branch: FanOutBranch, item: Any) -> None:
            async with semaphore:
                set_trace_context(subtask_id=branch.item_id)
                branch.status = "running"
                ctx = NodeContext(
                    thread_id=thread_id,
                    node_id=node_spec.id,
                    state=view,
                    item=item,
                    allow_interrupt=False,
                )
                start = time.monotonic()
                try:
                    if timeout_seconds:
                        update = await asyncio.wait_for(
                            fan_out.worker.execute(ctx), timeout_seconds
                        )
                    else:
                        update = await fan_out.worker.execute(ctx)
                    branch.status = "completed"
                except GraphConfigurationError:
                    raise
                except NodeInterrupt as e:
                    raise GraphConfigurationError(
                        f"Worker for '{branch.item_id}' raised an interrupt; "
                        "parallel workers cannot suspend the thread",
                        thread_id=thread_id,
                    ) from e
                except Exception as e:
                    branch.status = "failed"
                    if isinstance(e, TimeoutError):
                        branch.error = f"timed out after {timeout_seconds}s"
                    else:
                        branch.error = f"{type(e).__name__}: {e}"
                    if fan_out.on_error is None:
                        self.logger.error(f"      ✗ Worker {branch.item_id}: {branch.error}")
                        raise NodeExecutionError(node_spec.id, e, thread_id=thread_id) from e
                    self.logger.warning(
                        f"      ✗ Worker {branch.item_id}: {branch.error} (recorded, continuing)"
                    )
                    update = fan_out.on_error(item, e)
                finally:
                    branch.latency_ms = int((time.monotonic() - start) * 1000)

                if branch.status == "completed":
                    self.logger.info(
                        f"      ✓ Worker {branch.item_id}: done ({branch.latency_ms}ms)",
                        extra={"latency_ms": branch.latency_ms},
                    )
                completed.append((branch, update or {}))

        tasks = [
            asyncio.create_task(execute_single_branch(branch, item))
            for branch, item in zip(branches, items, strict=True)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        new_state = dict(state)
        for branch, update in completed:
            new_state = schema.merge(
                new_state, update, thread_id, source=f"{node_spec.id}[{branch.item_id}]"
            )

        failed = [b.item_id for b in branches if b.status == "failed"]
        self.logger.info(
            f"   ⑃ Fan-out complete: {len(branches) - len(failed)}/{len(branches)} succeeded"
            + (f", recovered failures: {failed}" if failed else "")
        )
        return new_state

    async def _save(
        self,
        graph: GraphSpec,
        thread_id: str,
        state: dict[str, Any],
        status: ThreadStatus,
        current_node: str | None,
        next_node: str | None,
        path: list[str],
        step_count: int,
        pending_interrupt: InterruptSignal | None = None,
    ) -> None:
        checkpoint = Checkpoint.create(
            thread_id=thread_id,
            graph_id=graph.id,
            state=state,
            status=status,
            current_node=current_node,
            next_node=next_node,
            pending_interrupt=pending_interrupt,
            execution_path=path,
            step_count=step_count,
        )
        await self.checkpoint_store.save(checkpoint)


class CompiledGraph:
    """
    A validated graph bound to its node implementations and checkpoint store.

    Every call is scoped by an explicit thread id; there is no ambient session.
    """

    def __init__(
        self,
        graph: GraphSpec,
        registry: dict[str, NodeProtocol],
        executor: GraphExecutor,
    ):
        self.graph = graph
        self.registry = registry
        self.executor = executor

    @property
    def checkpoint_store(self) -> CheckpointStore:
        return self.executor.checkpoint_store

    async def invoke(
        self,
        input_data: Mapping[str, Any] | None,
        thread_id: str,
    ) -> ExecutionResult:
        """
        Start a thread, or continue one that stopped between nodes.

        Raises:
            ThreadSuspendedError: If the thread is waiting on resume()
        """
        return await self.executor.run(self.graph, self.registry, thread_id, input_data)

    async def resume(self, value: Any, thread_id: str) -> ExecutionResult:
        """
        Deliver a resume value to the node the thread is suspended in.

        Raises:
            CheckpointNotFoundError: If the thread was never started
            CheckpointCorruptedError: If its checkpoint cannot be read
            NoPendingInterruptError: If the thread is not suspended
            InvalidResumeError: If the node rejects the value's shape; the
                thread stays suspended and can be resumed again
        """
        return await self.executor.run(
            self.graph, self.registry, thread_id, resume_value=value
        )

    async def get_state(self, thread_id: str) -> Checkpoint | None:
        """Latest checkpoint for a thread, or None if it was never started."""
        return await self.checkpoint_store.load(thread_id)
