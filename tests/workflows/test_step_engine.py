"""Tests for causeway.workflows.engine: step groups, outputs and reverse-order rollback."""

from __future__ import annotations

import asyncio

import pytest

from causeway.core.errors import (
    ConsumerConfigurationError,
    RollbackError,
    StepExecutionError,
    StepOutputValidationError,
)
from causeway.testing import StepRecorder
from causeway.workflows import FlowRun, StepEngine, StepHandler, define_workflow


def make_run(definition, handlers, data=None) -> FlowRun:
    return FlowRun(
        flow_id="flow-test",
        definition=definition,
        handlers=handlers,
        data=data if data is not None else {},
        correlation_id="c1",
    )


def sequential(*names):
    return define_workflow("test.flow", data=dict).steps(lambda s: s.sequential(*names))


@pytest.fixture
def engine():
    return StepEngine()


@pytest.fixture
def recorder():
    return StepRecorder()


# ── Sequential groups ────────────────────────────────────────────────


class TestSequential:
    @pytest.mark.asyncio
    async def test_runs_in_order_and_records_outputs(self, engine, recorder):
        definition = sequential("a", "b", "c")
        run = make_run(definition, recorder.handlers(["a", "b", "c"]))
        results = await engine.run(run)
        assert recorder.calls == ["a-execute", "b-execute", "c-execute"]
        assert results == {"a": {"step": "a"}, "b": {"step": "b"}, "c": {"step": "c"}}

    @pytest.mark.asyncio
    async def test_later_steps_see_earlier_results(self, engine, recorder):
        definition = sequential("a", "b")
        run = make_run(definition, recorder.handlers(["a", "b"], outputs={"a": 41}))
        await engine.run(run)
        first_ctx, second_ctx = recorder.contexts
        assert dict(first_ctx.results) == {}
        assert second_ctx.results["a"] == 41
        assert second_ctx.step_name == "b"
        assert second_ctx.flow_id == "flow-test"
        assert second_ctx.correlation_id == "c1"

    @pytest.mark.asyncio
    async def test_sync_handlers_supported(self, engine):
        definition = sequential("a")
        run = make_run(definition, {"a": StepHandler(lambda ctx: "sync")})
        assert await engine.run(run) == {"a": "sync"}

    @pytest.mark.asyncio
    async def test_step_less_definition(self, engine):
        run = make_run(define_workflow("test.empty", data=dict), {})
        assert await engine.run(run) == {}


# ── Rollback ─────────────────────────────────────────────────────────


class TestRollback:
    @pytest.mark.asyncio
    async def test_failure_rolls_back_completed_steps_in_reverse(self, engine, recorder):
        error = ValueError("boom")
        definition = sequential("s1", "s2", "s3")
        run = make_run(definition, recorder.handlers(["s1", "s2", "s3"], fail={"s3": error}))

        with pytest.raises(StepExecutionError) as exc_info:
            await engine.run(run)

        assert recorder.calls == [
            "s1-execute",
            "s2-execute",
            "s3-execute",
            "s2-rollback",
            "s1-rollback",
        ]
        assert exc_info.value.step_name == "s3"
        assert exc_info.value.cause is error
        assert run.failed_step == "s3"

    @pytest.mark.asyncio
    async def test_failed_step_is_not_rolled_back(self, engine, recorder):
        definition = sequential("a", "b")
        run = make_run(definition, recorder.handlers(["a", "b"], fail={"a": ValueError("x")}))
        with pytest.raises(StepExecutionError):
            await engine.run(run)
        assert recorder.rolled_back() == []

    @pytest.mark.asyncio
    async def test_rollback_failure_does_not_stop_cascade(self, engine, recorder):
        error = ValueError("boom")
        definition = sequential("s1", "s2", "s3")
        handlers = recorder.handlers(
            ["s1", "s2", "s3"],
            fail={"s3": error},
            fail_rollback={"s2": RuntimeError("refund failed")},
        )
        run = make_run(definition, handlers)

        with pytest.raises(StepExecutionError) as exc_info:
            await engine.run(run)

        assert recorder.rolled_back() == ["s2", "s1"]
        assert exc_info.value.cause is error
        assert len(run.rollback_errors) == 1
        assert isinstance(run.rollback_errors[0], RollbackError)
        assert run.rollback_errors[0].step_name == "s2"

    @pytest.mark.asyncio
    async def test_steps_without_rollback_are_skipped(self, engine, recorder):
        definition = sequential("a", "b", "c")
        handlers = recorder.handlers(
            ["a", "b", "c"], fail={"c": ValueError("x")}, without_rollback=["b"]
        )
        with pytest.raises(StepExecutionError):
            await engine.run(make_run(definition, handlers))
        assert recorder.rolled_back() == ["a"]

    @pytest.mark.asyncio
    async def test_rollback_context(self, engine, recorder):
        contexts = []

        async def compensate(ctx):
            contexts.append(ctx)

        definition = sequential("a", "b")
        handlers = {
            "a": StepHandler(lambda ctx: "charged", compensate),
            "b": StepHandler(recorder.handlers(["b"], fail={"b": ValueError("x")})["b"].execute),
        }
        with pytest.raises(StepExecutionError):
            await engine.run(make_run(definition, handlers))
        (ctx,) = contexts
        assert ctx.rollback is True
        assert ctx.step_name == "a"
        assert ctx.results["a"] == "charged"


# ── Parallel groups ──────────────────────────────────────────────────


class TestParallel:
    @pytest.mark.asyncio
    async def test_members_run_concurrently(self, engine, recorder):
        definition = define_workflow("test.flow", data=dict).steps(
            lambda s: s.parallel("a", "b").sequential("c")
        )
        handlers = recorder.handlers(["a", "b", "c"], delays={"a": 0.03})
        run = make_run(definition, handlers)
        results = await engine.run(run)
        assert recorder.calls == ["b-execute", "a-execute", "c-execute"]
        assert set(recorder.contexts[-1].results) == {"a", "b"}
        assert set(results) == {"a", "b", "c"}

    @pytest.mark.asyncio
    async def test_members_share_pre_group_snapshot(self, engine, recorder):
        definition = define_workflow("test.flow", data=dict).steps(
            lambda s: s.sequential("first").parallel("a", "b")
        )
        handlers = recorder.handlers(["first", "a", "b"], delays={"b": 0.02})
        await engine.run(make_run(definition, handlers))
        for ctx in recorder.contexts[1:]:
            assert set(ctx.results) == {"first"}

    @pytest.mark.asyncio
    async def test_failure_waits_for_siblings_then_rolls_back_all(self, engine, recorder):
        definition = define_workflow("test.flow", data=dict).steps(
            lambda s: s.sequential("a").parallel("b", "c")
        )
        handlers = recorder.handlers(
            ["a", "b", "c"], fail={"b": ValueError("b failed")}, delays={"c": 0.02}
        )
        with pytest.raises(StepExecutionError) as exc_info:
            await engine.run(make_run(definition, handlers))

        assert recorder.calls == [
            "a-execute",
            "b-execute",
            "c-execute",
            "c-rollback",
            "a-rollback",
        ]
        assert exc_info.value.step_name == "b"

    @pytest.mark.asyncio
    async def test_rollback_follows_settlement_order(self, engine, recorder):
        definition = define_workflow("test.flow", data=dict).steps(
            lambda s: s.parallel("slow", "fast").sequential("boom")
        )
        handlers = recorder.handlers(
            ["slow", "fast", "boom"], fail={"boom": ValueError("x")}, delays={"slow": 0.03}
        )
        with pytest.raises(StepExecutionError):
            await engine.run(make_run(definition, handlers))
        assert recorder.rolled_back() == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_wide_group_starts_every_member_before_any_settles(self):
        names = [f"shard-{i}" for i in range(12)]
        started: list[str] = []
        release = asyncio.Event()

        def member(name):
            async def execute(ctx):
                started.append(name)
                await release.wait()
                return name

            return StepHandler(execute)

        definition = define_workflow("test.flow", data=dict).steps(lambda s: s.parallel(*names))
        handlers = {name: member(name) for name in names}
        task = asyncio.create_task(StepEngine().run(make_run(definition, handlers)))
        for _ in range(100):
            if len(started) == len(names):
                break
            await asyncio.sleep(0)

        assert sorted(started) == sorted(names)
        assert not task.done()
        release.set()
        results = await task
        assert results == {name: name for name in names}

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, recorder):
        active = 0
        peak = 0

        async def execute(ctx):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        definition = define_workflow("test.flow", data=dict).steps(lambda s: s.parallel("a", "b", "c"))
        handlers = {name: StepHandler(execute) for name in ("a", "b", "c")}
        await StepEngine(parallel_concurrency=1).run(make_run(definition, handlers))
        assert peak == 1

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            StepEngine(parallel_concurrency=0)


# ── Output validation and misconfiguration ───────────────────────────


class TestStepFailures:
    @pytest.mark.asyncio
    async def test_invalid_output_counts_as_step_failure(self, engine, recorder):
        definition = define_workflow("test.flow", data=dict).steps(
            lambda s: s.sequential("a", s.step("charge", output=int))
        )
        handlers = recorder.handlers(["a", "charge"], outputs={"charge": "not a number"})
        run = make_run(definition, handlers)
        with pytest.raises(StepExecutionError) as exc_info:
            await engine.run(run)
        assert isinstance(exc_info.value.cause, StepOutputValidationError)
        assert recorder.rolled_back() == ["a"]
        assert "charge" not in run.results

    @pytest.mark.asyncio
    async def test_missing_handler_counts_as_step_failure(self, engine, recorder):
        definition = sequential("a", "b")
        run = make_run(definition, recorder.handlers(["a"]))
        with pytest.raises(StepExecutionError) as exc_info:
            await engine.run(run)
        assert isinstance(exc_info.value.cause, ConsumerConfigurationError)
        assert recorder.rolled_back() == ["a"]
