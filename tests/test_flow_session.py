from __future__ import annotations

import asyncio
from typing import Any

import pytest

from flow_tools.user_flow.config import FlowConfig
from flow_tools.user_flow.flow import FlowSession, GatherFailure, InvalidFlowState
from flow_tools.user_flow.types import FlowServices, GatherResult, RunnerOptions, StepFlags


def _artifacts(mode: str, url: str = "https://example.com/") -> dict[str, Any]:
    return {"GatherContext": {"gatherMode": mode}, "URL": {"finalDisplayedUrl": url}}


class FakeTimespan:
    def __init__(self, owner: FakeGatherers) -> None:
        self.owner = owner

    async def end_timespan_gather(self) -> GatherResult:
        self.owner.calls.append(("end_timespan",))
        if self.owner.fail_end_timespan:
            raise RuntimeError("trace buffer lost")
        return GatherResult(artifacts=_artifacts("timespan"), runner_options=RunnerOptions(config={"m": "timespan"}))


class FakeGatherers:
    """Records every collaborator call; no browser involved."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.fail_navigation = False
        self.fail_end_timespan = False

    async def run_navigation(self, page: Any, requestor: Any, *, config: Any, flags: StepFlags | None) -> GatherResult:
        self.calls.append(("navigation", requestor, flags))
        if self.fail_navigation:
            raise RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        url = requestor if isinstance(requestor, str) else "https://example.com/"
        return GatherResult(artifacts=_artifacts("navigation", url), runner_options=RunnerOptions(config={"m": "nav"}))

    def run_timespan(self, page: Any, *, config: Any, flags: StepFlags | None) -> FakeTimespan:
        self.calls.append(("start_timespan", flags))
        return FakeTimespan(self)

    def run_snapshot(self, page: Any, *, config: Any, flags: StepFlags | None) -> GatherResult:
        self.calls.append(("snapshot", flags))
        return GatherResult(artifacts=_artifacts("snapshot"), runner_options=RunnerOptions(config={"m": "snap"}))

    def services(self) -> FlowServices:
        return FlowServices(
            run_navigation=self.run_navigation,
            run_timespan=self.run_timespan,
            run_snapshot=self.run_snapshot,
            initialize_config=lambda mode, config=None, flags=None: {"config": {"m": mode}},
            score_artifacts=lambda artifacts, opts: {"gatherMode": artifacts["GatherContext"]["gatherMode"]},
        )


def _flow(gatherers: FakeGatherers, **options: Any) -> FlowSession:
    return FlowSession(page=object(), services=gatherers.services(), options=FlowConfig(**options))


def test_navigate_snapshot_timespan_append_steps_in_completion_order() -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers)

    async def scenario() -> None:
        await flow.navigate("https://example.com/")
        await flow.start_timespan({"name": "Search"})
        assert flow.current_timespan is not None
        assert len(flow.gather_steps) == 1
        await flow.end_timespan()
        assert flow.current_timespan is None
        await flow.snapshot()

    asyncio.run(scenario())

    modes = [step.gather_mode for step in flow.gather_steps]
    assert modes == ["navigation", "timespan", "snapshot"]
    assert flow.gather_steps[1].step_flags == StepFlags(name="Search")
    assert all(step in flow.runner_options for step in flow.gather_steps)


def test_navigation_default_flags() -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers)

    async def scenario() -> None:
        await flow.navigate("https://example.com/")
        await flow.snapshot()
        await flow.navigate("https://example.com/cart")
        await flow.navigate("https://example.com/pay", StepFlags(disable_storage_reset=False, skip_about_blank=False))

    asyncio.run(scenario())

    nav_flags = [call[2] for call in gatherers.calls if call[0] == "navigation"]
    assert nav_flags[0] == StepFlags(skip_about_blank=True)
    assert nav_flags[0].disable_storage_reset is None
    assert nav_flags[1] == StepFlags(skip_about_blank=True, disable_storage_reset=True)
    assert nav_flags[2] == StepFlags(skip_about_blank=False, disable_storage_reset=False)
    # Recorded flags are the effective ones.
    assert flow.gather_steps[2].step_flags == nav_flags[1]


def test_snapshot_only_flow_never_gets_storage_default() -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers)

    async def scenario() -> None:
        await flow.snapshot()
        await flow.start_timespan()
        await flow.end_timespan()
        await flow.navigate("https://example.com/")

    asyncio.run(scenario())

    nav_flags = [call[2] for call in gatherers.calls if call[0] == "navigation"]
    assert nav_flags == [StepFlags(skip_about_blank=True)]


@pytest.mark.parametrize("operation", ["navigate", "start_navigation", "start_timespan", "snapshot", "end_navigation"])
def test_operations_rejected_while_timespan_active(operation: str) -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers)

    async def scenario() -> InvalidFlowState:
        await flow.start_timespan()
        calls_before = len(gatherers.calls)
        method = getattr(flow, operation)
        args = ("https://example.com/",) if operation == "navigate" else ()
        with pytest.raises(InvalidFlowState) as excinfo:
            await method(*args)
        assert len(gatherers.calls) == calls_before
        return excinfo.value

    err = asyncio.run(scenario())
    assert err.active == "timespan"
    assert err.reason == "Timespan already in progress"
    assert flow.gather_steps == ()


def test_end_operations_without_start() -> None:
    flow = _flow(FakeGatherers())

    async def scenario() -> None:
        with pytest.raises(InvalidFlowState, match="No timespan in progress") as ts_err:
            await flow.end_timespan()
        assert ts_err.value.active is None
        with pytest.raises(InvalidFlowState, match="No navigation in progress"):
            await flow.end_navigation()

    asyncio.run(scenario())
    assert flow.gather_steps == ()


def test_pending_snapshot_blocks_other_operations() -> None:
    gatherers = FakeGatherers()
    flow_holder: dict[str, FlowSession] = {}

    async def scenario() -> None:
        gate = asyncio.Event()

        async def slow_snapshot(page: Any, *, config: Any, flags: Any) -> GatherResult:
            await gate.wait()
            return GatherResult(artifacts=_artifacts("snapshot"), runner_options=RunnerOptions(config={}))

        services = gatherers.services()
        services.run_snapshot = slow_snapshot
        flow = FlowSession(page=object(), services=services)
        flow_holder["flow"] = flow

        pending = asyncio.create_task(flow.snapshot())
        await asyncio.sleep(0)
        with pytest.raises(InvalidFlowState) as excinfo:
            await flow.start_timespan()
        assert excinfo.value.active == "snapshot"

        gate.set()
        await pending
        await flow.start_timespan()
        await flow.end_timespan()

    asyncio.run(scenario())
    assert [s.gather_mode for s in flow_holder["flow"].gather_steps] == ["snapshot", "timespan"]


def test_gather_failure_keeps_earlier_steps() -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers)

    async def scenario() -> None:
        await flow.snapshot()
        gatherers.fail_navigation = True
        with pytest.raises(GatherFailure) as excinfo:
            await flow.navigate("https://example.invalid/")
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert excinfo.value.reason == "net::ERR_NAME_NOT_RESOLVED"
        assert excinfo.value.action == "navigate"

        # Session is still usable after the failure.
        gatherers.fail_navigation = False
        await flow.navigate("https://example.com/")

    asyncio.run(scenario())
    assert [s.gather_mode for s in flow.gather_steps] == ["snapshot", "navigation"]


def test_end_timespan_failure_clears_slot() -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers)

    async def scenario() -> None:
        await flow.start_timespan()
        gatherers.fail_end_timespan = True
        with pytest.raises(GatherFailure, match="trace buffer lost"):
            await flow.end_timespan()
        assert flow.current_timespan is None
        await flow.snapshot()

    asyncio.run(scenario())
    assert [s.gather_mode for s in flow.gather_steps] == ["snapshot"]


def test_gatherer_without_result_is_a_gather_failure() -> None:
    gatherers = FakeGatherers()
    services = gatherers.services()
    services.run_snapshot = lambda page, *, config, flags: None
    flow = FlowSession(page=object(), services=services)

    with pytest.raises(GatherFailure, match="Gatherer returned no result"):
        asyncio.run(flow.snapshot())
    assert flow.gather_steps == ()


def test_gatherer_result_without_url_is_rejected() -> None:
    gatherers = FakeGatherers()
    services = gatherers.services()
    services.run_snapshot = lambda page, *, config, flags: GatherResult(
        artifacts={"GatherContext": {"gatherMode": "snapshot"}},
        runner_options=RunnerOptions(config={}),
    )
    flow = FlowSession(page=object(), services=services)

    with pytest.raises(GatherFailure, match="finalDisplayedUrl"):
        asyncio.run(flow.snapshot())
    assert flow.gather_steps == ()


def test_flow_config_is_passed_to_gatherers() -> None:
    gatherers = FakeGatherers()
    seen: list[Any] = []

    def run_snapshot(page: Any, *, config: Any, flags: Any) -> GatherResult:
        seen.append((page, config))
        return GatherResult(artifacts=_artifacts("snapshot"), runner_options=RunnerOptions(config=config))

    services = gatherers.services()
    services.run_snapshot = run_snapshot
    page = object()
    flow = FlowSession(page=page, services=services, options=FlowConfig(config={"extends": "default"}))
    asyncio.run(flow.snapshot())

    assert seen == [(page, {"extends": "default"})]


def test_create_artifacts_json_returns_steps_and_name() -> None:
    gatherers = FakeGatherers()
    flow = _flow(gatherers, name="Checkout")

    async def scenario() -> Any:
        await flow.navigate("https://example.com/", {"name": "Landing"})
        await flow.snapshot()
        return await flow.create_artifacts_json()

    flow_artifacts = asyncio.run(scenario())
    assert flow_artifacts.name == "Checkout"
    assert flow_artifacts.gather_steps == list(flow.gather_steps)

    payload = flow_artifacts.to_dict()
    assert payload["name"] == "Checkout"
    assert payload["gatherSteps"][0]["stepFlags"] == {"name": "Landing", "skipAboutBlank": True}
    assert "stepFlags" not in payload["gatherSteps"][1]


def test_second_end_timespan_is_rejected_while_first_is_pending() -> None:
    gatherers = FakeGatherers()
    ended: list[str] = []

    async def scenario() -> FlowSession:
        gate = asyncio.Event()

        class SlowTimespan:
            async def end_timespan_gather(self) -> GatherResult:
                ended.append("end")
                await gate.wait()
                return GatherResult(artifacts=_artifacts("timespan"), runner_options=RunnerOptions(config={}))

        services = gatherers.services()
        services.run_timespan = lambda page, *, config, flags: SlowTimespan()
        flow = FlowSession(page=object(), services=services)

        await flow.start_timespan()
        first = asyncio.create_task(flow.end_timespan())
        await asyncio.sleep(0)

        with pytest.raises(InvalidFlowState, match="Timespan end already in progress") as excinfo:
            await flow.end_timespan()
        assert excinfo.value.active == "timespan"
        assert flow.current_timespan is not None
        with pytest.raises(InvalidFlowState, match="Timespan already in progress"):
            await flow.snapshot()

        gate.set()
        await first
        assert flow.current_timespan is None
        return flow

    flow = asyncio.run(scenario())
    assert ended == ["end"]
    assert [s.gather_mode for s in flow.gather_steps] == ["timespan"]
