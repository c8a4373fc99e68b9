"""
Tests for GraphExecutor execution paths.
Linear runs, routing, interrupts, failures and fan-out.
"""

import asyncio

import pytest

from shipspec.errors import (
    CheckpointNotFoundError,
    GraphConfigurationError,
    InvalidResumeError,
    NoPendingInterruptError,
    NodeExecutionError,
    ThreadSuspendedError,
)
from shipspec.graph import (
    EdgeCondition,
    EdgeSpec,
    ExecutorConfig,
    FanOutNode,
    GraphExecutor,
    GraphSpec,
    NodeContext,
    NodeProtocol,
    NodeSpec,
    Reducer,
    StateField,
    StateSchema,
    require_text_resume,
)
from shipspec.schemas.checkpoint import ThreadStatus

schema = StateSchema(
    [
        StateField("count", default=0),
        StateField("log", Reducer.APPEND),
        StateField("answer", default=""),
        StateField("items", default_factory=list),
        StateField("results", Reducer.MERGE_BY_ID),
        StateField("diagnostics", Reducer.CONCAT_TEXT),
    ]
)


# ---- Fake nodes ----
class IncrementNode(NodeProtocol):
    async def execute(self, ctx: NodeContext):
        return {"count": ctx.state["count"] + 1, "log": [ctx.node_id]}


class AskNode(NodeProtocol):
    """Interrupts once, then stores the answer."""

    def __init__(self):
        self.runs = 0

    async def execute(self, ctx: NodeContext):
        self.runs += 1
        raw = ctx.interrupt("question", {"text": "name?"})
        answer = require_text_resume(raw, ctx.thread_id, "answer", allow_empty=False)
        return {"answer": answer, "log": ["ask"]}


class BoomNode(NodeProtocol):
    async def execute(self, ctx: NodeContext):
        raise RuntimeError("collaborator down")


class EchoWorker(NodeProtocol):
    async def execute(self, ctx: NodeContext):
        item = ctx.item
        if item.get("delay"):
            await asyncio.sleep(item["delay"])
        if item.get("fail"):
            raise ValueError(f"bad item {item['id']}")
        return {"results": [{"id": item["id"], "status": "done"}]}


def graph(nodes, edges, entry, terminal, **kwargs) -> GraphSpec:
    return GraphSpec(
        id="test-graph",
        entry_node=entry,
        terminal_nodes=terminal,
        nodes=[NodeSpec(id=n, name=n) for n in nodes],
        edges=edges,
        state_schema=schema,
        **kwargs,
    )


def linear_graph() -> GraphSpec:
    return graph(
        ["a", "b"],
        [EdgeSpec(id="a-b", source="a", target="b")],
        "a",
        ["b"],
    )


def ask_graph() -> GraphSpec:
    return graph(
        ["start", "ask", "end"],
        [
            EdgeSpec(id="start-ask", source="start", target="ask"),
            EdgeSpec(id="ask-end", source="ask", target="end"),
        ],
        "start",
        ["end"],
    )


@pytest.mark.asyncio
async def test_linear_graph_runs_to_completion():
    app = GraphExecutor().compile(linear_graph(), {"a": IncrementNode(), "b": IncrementNode()})

    result = await app.invoke({}, thread_id="t1")

    assert result.completed
    assert result.path == ["a", "b"]
    assert result.steps_executed == 2
    assert result.state["count"] == 2
    assert result.state["log"] == ["a", "b"]

    checkpoint = await app.get_state("t1")
    assert checkpoint.status == ThreadStatus.COMPLETED
    assert checkpoint.execution_path == ["a", "b"]


@pytest.mark.asyncio
async def test_function_nodes_are_accepted():
    app = GraphExecutor().compile(
        linear_graph(),
        {"a": lambda ctx: {"count": 10}, "b": lambda ctx: None},
    )
    result = await app.invoke({}, thread_id="t1")
    assert result.state["count"] == 10


@pytest.mark.asyncio
async def test_input_is_merged_into_initial_state():
    app = GraphExecutor().compile(linear_graph(), {"a": IncrementNode(), "b": IncrementNode()})
    result = await app.invoke({"count": 5}, thread_id="t1")
    assert result.state["count"] == 7


@pytest.mark.asyncio
async def test_conditional_self_loop():
    g = graph(
        ["loop", "done"],
        [
            EdgeSpec(
                id="loop-route",
                source="loop",
                condition=EdgeCondition.CONDITIONAL,
                router=lambda s: "done" if s["count"] >= 3 else "loop",
                targets=["loop", "done"],
            )
        ],
        "loop",
        ["done"],
    )
    app = GraphExecutor().compile(g, {"loop": IncrementNode(), "done": IncrementNode()})

    result = await app.invoke({}, thread_id="t1")

    assert result.path == ["loop", "loop", "loop", "done"]


@pytest.mark.asyncio
async def test_router_to_unknown_node_is_a_configuration_error():
    g = graph(
        ["a", "b"],
        [
            EdgeSpec(
                id="a-route",
                source="a",
                condition=EdgeCondition.CONDITIONAL,
                router=lambda s: "nowhere",
                targets=["b"],
            )
        ],
        "a",
        ["b"],
    )
    app = GraphExecutor().compile(g, {"a": IncrementNode(), "b": IncrementNode()})

    with pytest.raises(GraphConfigurationError, match="unknown node 'nowhere'"):
        await app.invoke({}, thread_id="t1")


@pytest.mark.asyncio
async def test_max_steps_stops_a_runaway_cycle():
    g = graph(
        ["spin", "never"],
        [
            EdgeSpec(
                id="spin-route",
                source="spin",
                condition=EdgeCondition.CONDITIONAL,
                router=lambda s: "spin",
                targets=["spin", "never"],
            )
        ],
        "spin",
        ["never"],
    )
    executor = GraphExecutor(config=ExecutorConfig(max_steps=5))
    app = executor.compile(g, {"spin": IncrementNode(), "never": IncrementNode()})

    with pytest.raises(GraphConfigurationError, match="Exceeded 5 steps"):
        await app.invoke({}, thread_id="t1")


class TestCompileValidation:
    def test_missing_implementation(self):
        with pytest.raises(GraphConfigurationError, match="has no implementation"):
            GraphExecutor().compile(linear_graph(), {"a": IncrementNode()})

    def test_missing_edge_target(self):
        g = graph(["a", "b"], [EdgeSpec(id="a-x", source="a", target="x")], "a", ["b"])
        with pytest.raises(GraphConfigurationError, match="missing target 'x'"):
            GraphExecutor().compile(g, {"a": IncrementNode(), "b": IncrementNode()})

    def test_two_outgoing_edges(self):
        g = graph(
            ["a", "b", "c"],
            [
                EdgeSpec(id="a-b", source="a", target="b"),
                EdgeSpec(id="a-c", source="a", target="c"),
            ],
            "a",
            ["b", "c"],
        )
        with pytest.raises(GraphConfigurationError, match="2 outgoing edges"):
            GraphExecutor().compile(
                g, {"a": IncrementNode(), "b": IncrementNode(), "c": IncrementNode()}
            )

    def test_terminal_node_with_outgoing_edge(self):
        g = graph(
            ["a", "b"],
            [
                EdgeSpec(id="a-b", source="a", target="b"),
                EdgeSpec(id="b-a", source="b", target="a"),
            ],
            "a",
            ["b"],
        )
        with pytest.raises(GraphConfigurationError, match="Terminal node 'b'"):
            GraphExecutor().compile(g, {"a": IncrementNode(), "b": IncrementNode()})

    def test_unreachable_node(self):
        g = graph(
            ["a", "b", "orphan"],
            [
                EdgeSpec(id="a-b", source="a", target="b"),
                EdgeSpec(id="orphan-b", source="orphan", target="b"),
            ],
            "a",
            ["b"],
        )
        with pytest.raises(GraphConfigurationError, match="unreachable"):
            GraphExecutor().compile(
                g, {"a": IncrementNode(), "b": IncrementNode(), "orphan": IncrementNode()}
            )


class TestInterruptResume:
    @pytest.mark.asyncio
    async def test_interrupt_suspends_and_resume_continues(self):
        ask = AskNode()
        app = GraphExecutor().compile(
            ask_graph(), {"start": IncrementNode(), "ask": ask, "end": IncrementNode()}
        )

        result = await app.invoke({}, thread_id="t1")

        assert result.interrupted
        assert result.interrupt.type == "question"
        assert result.interrupt.payload == {"text": "name?"}
        assert result.interrupt.node_id == "ask"
        assert result.path == ["start"]

        checkpoint = await app.get_state("t1")
        assert checkpoint.status == ThreadStatus.INTERRUPTED
        assert checkpoint.next_node == "ask"

        result = await app.resume("Ada", thread_id="t1")

        assert result.completed
        assert result.state["answer"] == "Ada"
        assert result.path == ["ask", "end"]
        assert result.state["log"] == ["start", "ask", "end"]
        assert ask.runs == 2

    @pytest.mark.asyncio
    async def test_invoke_on_suspended_thread_is_rejected(self):
        app = GraphExecutor().compile(
            ask_graph(), {"start": IncrementNode(), "ask": AskNode(), "end": IncrementNode()}
        )
        await app.invoke({}, thread_id="t1")

        with pytest.raises(ThreadSuspendedError, match="'question' interrupt"):
            await app.invoke({}, thread_id="t1")

    @pytest.mark.asyncio
    async def test_resume_without_pending_interrupt(self):
        app = GraphExecutor().compile(linear_graph(), {"a": IncrementNode(), "b": IncrementNode()})
        await app.invoke({}, thread_id="t1")

        with pytest.raises(NoPendingInterruptError):
            await app.resume("anything", thread_id="t1")

    @pytest.mark.asyncio
    async def test_resume_unknown_thread(self):
        app = GraphExecutor().compile(linear_graph(), {"a": IncrementNode(), "b": IncrementNode()})
        with pytest.raises(CheckpointNotFoundError):
            await app.resume("anything", thread_id="never-started")

    @pytest.mark.asyncio
    async def test_invalid_resume_leaves_thread_suspended(self):
        app = GraphExecutor().compile(
            ask_graph(), {"start": IncrementNode(), "ask": AskNode(), "end": IncrementNode()}
        )
        await app.invoke({}, thread_id="t1")

        with pytest.raises(InvalidResumeError) as exc_info:
            await app.resume({"not": "text"}, thread_id="t1")
        assert exc_info.value.received_type == "dict"

        with pytest.raises(InvalidResumeError):
            await app.resume("   ", thread_id="t1")

        checkpoint = await app.get_state("t1")
        assert checkpoint.status == ThreadStatus.INTERRUPTED

        result = await app.resume("Grace", thread_id="t1")
        assert result.completed
        assert result.state["answer"] == "Grace"

    @pytest.mark.asyncio
    async def test_threads_are_isolated(self):
        app = GraphExecutor().compile(
            ask_graph(), {"start": IncrementNode(), "ask": AskNode(), "end": IncrementNode()}
        )
        await app.invoke({}, thread_id="t1")
        await app.invoke({"count": 100}, thread_id="t2")

        first = await app.resume("one", thread_id="t1")
        second = await app.resume("two", thread_id="t2")

        assert first.state["answer"] == "one"
        assert first.state["count"] == 2
        assert second.state["answer"] == "two"
        assert second.state["count"] == 102


class TestNodeFailure:
    @pytest.mark.asyncio
    async def test_collaborator_error_is_wrapped_and_not_merged(self):
        g = graph(
            ["a", "boom", "c"],
            [
                EdgeSpec(id="a-boom", source="a", target="boom"),
                EdgeSpec(id="boom-c", source="boom", target="c"),
            ],
            "a",
            ["c"],
        )
        app = GraphExecutor().compile(
            g, {"a": IncrementNode(), "boom": BoomNode(), "c": IncrementNode()}
        )

        with pytest.raises(NodeExecutionError) as exc_info:
            await app.invoke({}, thread_id="t1")

        assert exc_info.value.node_id == "boom"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.retriable is True

        checkpoint = await app.get_state("t1")
        assert checkpoint.status == ThreadStatus.RUNNING
        assert checkpoint.next_node == "boom"
        assert checkpoint.state["count"] == 1

    @pytest.mark.asyncio
    async def test_failed_thread_can_be_continued(self):
        g = graph(
            ["a", "flaky", "c"],
            [
                EdgeSpec(id="a-flaky", source="a", target="flaky"),
                EdgeSpec(id="flaky-c", source="flaky", target="c"),
            ],
            "a",
            ["c"],
        )
        calls = {"n": 0}

        def flaky(ctx):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("try again")
            return {"log": ["flaky"]}

        app = GraphExecutor().compile(
            g, {"a": IncrementNode(), "flaky": flaky, "c": IncrementNode()}
        )

        with pytest.raises(NodeExecutionError):
            await app.invoke({}, thread_id="t1")
        result = await app.invoke(None, thread_id="t1")

        assert result.completed
        assert result.path == ["flaky", "c"]
        assert result.state["log"] == ["a", "flaky", "c"]

    @pytest.mark.asyncio
    async def test_undeclared_field_in_update_is_a_configuration_error(self):
        app = GraphExecutor().compile(
            linear_graph(), {"a": lambda ctx: {"bogus": 1}, "b": IncrementNode()}
        )
        with pytest.raises(GraphConfigurationError, match="undeclared"):
            await app.invoke({}, thread_id="t1")


def fan_out_graph() -> GraphSpec:
    return graph(
        ["workers", "join"],
        [EdgeSpec(id="workers-join", source="workers", target="join")],
        "workers",
        ["join"],
    )


def compile_fan_out(fan_out: FanOutNode, config: ExecutorConfig | None = None):
    executor = GraphExecutor(config=config)
    return executor.compile(fan_out_graph(), {"workers": fan_out, "join": IncrementNode()})


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_item_is_merged(self):
        fan_out = FanOutNode(items=lambda s: s["items"], worker=EchoWorker(), max_concurrency=2)
        app = compile_fan_out(fan_out)

        items = [{"id": "a"}, {"id": "b"}, {"id": "c"}]
        result = await app.invoke({"items": items}, thread_id="t1")

        assert result.completed
        assert sorted(r["id"] for r in result.state["results"]) == ["a", "b", "c"]
        assert all(r["status"] == "done" for r in result.state["results"])

    @pytest.mark.asyncio
    async def test_timeout_and_failure_recorded_by_on_error(self):
        def on_error(item, exc):
            reason = "timeout" if isinstance(exc, TimeoutError) else str(exc)
            return {"results": [{"id": item["id"], "status": "failed", "reason": reason}]}

        fan_out = FanOutNode(
            items=lambda s: s["items"],
            worker=EchoWorker(),
            on_error=on_error,
            timeout_seconds=0.05,
        )
        app = compile_fan_out(fan_out)

        items = [{"id": "ok"}, {"id": "slow", "delay": 1}, {"id": "bad", "fail": True}]
        result = await app.invoke({"items": items}, thread_id="t1")

        assert result.completed
        by_id = {r["id"]: r for r in result.state["results"]}
        assert by_id["ok"]["status"] == "done"
        assert by_id["slow"] == {"id": "slow", "status": "failed", "reason": "timeout"}
        assert by_id["bad"]["reason"] == "bad item bad"

    @pytest.mark.asyncio
    async def test_executor_timeout_applies_when_node_sets_none(self):
        def on_error(item, exc):
            return {"results": [{"id": item["id"], "status": type(exc).__name__}]}

        fan_out = FanOutNode(items=lambda s: s["items"], worker=EchoWorker(), on_error=on_error)
        app = compile_fan_out(fan_out, ExecutorConfig(fan_out_timeout_seconds=0.05))

        result = await app.invoke({"items": [{"id": "slow", "delay": 1}]}, thread_id="t1")

        assert result.state["results"] == [{"id": "slow", "status": "TimeoutError"}]

    @pytest.mark.asyncio
    async def test_worker_failure_without_on_error_fails_the_node(self):
        fan_out = FanOutNode(items=lambda s: s["items"], worker=EchoWorker())
        app = compile_fan_out(fan_out)

        with pytest.raises(NodeExecutionError, match="bad item x"):
            await app.invoke({"items": [{"id": "x", "fail": True}]}, thread_id="t1")

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        in_flight = {"now": 0, "peak": 0}

        async def worker(ctx):
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            await asyncio.sleep(0.01)
            in_flight["now"] -= 1
            return {"results": [{"id": ctx.item["id"]}]}

        fan_out = FanOutNode(items=lambda s: s["items"], worker=worker, max_concurrency=4)
        app = compile_fan_out(fan_out, ExecutorConfig(fan_out_concurrency_limit=2))

        items = [{"id": str(i)} for i in range(6)]
        result = await app.invoke({"items": items}, thread_id="t1")

        assert len(result.state["results"]) == 6
        assert in_flight["peak"] <= 2

    @pytest.mark.asyncio
    async def test_worker_interrupt_is_a_configuration_error(self):
        def worker(ctx):
            ctx.interrupt("question", {})
            return {}

        fan_out = FanOutNode(items=lambda s: s["items"], worker=worker, on_error=lambda i, e: {})
        app = compile_fan_out(fan_out)

        with pytest.raises(GraphConfigurationError, match="cannot interrupt"):
            await app.invoke({"items": [{"id": "x"}]}, thread_id="t1")

    @pytest.mark.asyncio
    async def test_empty_item_list_skips_the_fan_out(self):
        fan_out = FanOutNode(items=lambda s: s["items"], worker=EchoWorker())
        app = compile_fan_out(fan_out)

        result = await app.invoke({}, thread_id="t1")

        assert result.completed
        assert result.state["results"] == []

    def test_fan_out_node_cannot_be_interruptible(self):
        g = GraphSpec(
            id="bad",
            entry_node="workers",
            terminal_nodes=["join"],
            nodes=[NodeSpec(id="workers", interruptible=True), NodeSpec(id="join")],
            edges=[EdgeSpec(id="w-j", source="workers", target="join")],
            state_schema=schema,
        )
        fan_out = FanOutNode(items=lambda s: [], worker=EchoWorker())
        with pytest.raises(GraphConfigurationError, match="cannot be interruptible"):
            GraphExecutor().compile(g, {"workers": fan_out, "join": IncrementNode()})

    def test_max_concurrency_must_be_positive(self):
        with pytest.raises(GraphConfigurationError):
            FanOutNode(items=lambda s: [], worker=EchoWorker(), max_concurrency=0)
