"""User flow session: sequences navigation, timespan and snapshot gather steps on one page.

At most one of `current_navigation` / `current_timespan` is set at any time. Every
precondition is checked before the first await of an operation, so a rejected call has
no side effect and appends no step.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from ..config import FlowConfig
from ..redaction import describe_requestor, redact_flags, redact_url
from ..report import render_flow_report
from ..types import (
    NAVIGATION,
    SNAPSHOT,
    TIMESPAN,
    FlowArtifacts,
    FlowResult,
    FlowServices,
    GatherResult,
    GatherStep,
    NavigationRequestor,
    StepFlags,
    TimespanGather,
    final_displayed_url,
    gather_mode_of,
)
from .errors import FlowError, GatherFailure, InvalidFlowState, navigation_in_progress, timespan_in_progress
from .handshake import NavigationHandle, NavigationHandshake
from .helpers import maybe_await
from .options import StepRunnerOptionsRegistry
from .pipeline import audit_gather_steps

logger = logging.getLogger("flow.user_flow.session")

StepFlagsInput = StepFlags | Mapping[str, Any] | None


def _coerce_flags(step_flags: StepFlagsInput) -> StepFlags | None:
    if step_flags is None or isinstance(step_flags, StepFlags):
        return step_flags
    return StepFlags.from_dict(step_flags)


@dataclass
class ActiveTimespan:
    timespan: TimespanGather
    step_flags: StepFlags | None


class FlowSession:
    """Drives one user flow against a shared page handle.

    Usage:
        flow = FlowSession(page, services, FlowConfig(name="Checkout"))
        await flow.navigate("https://example.com/")
        await flow.start_timespan()
        ...  # interact with the page
        await flow.end_timespan()
        await flow.snapshot()
        report = await flow.generate_report()
    """

    def __init__(self, page: Any, services: FlowServices, options: FlowConfig | None = None) -> None:
        self._page = page
        self._services = services
        self._options = options or FlowConfig()
        self._gather_steps: list[GatherStep] = []
        self._runner_options = StepRunnerOptionsRegistry()
        self._current_navigation: NavigationHandle | None = None
        self._current_timespan: ActiveTimespan | None = None
        # Set while any gather call is suspended: before a slot is filled, or while it is being closed.
        self._busy: str | None = None

    @property
    def current_navigation(self) -> NavigationHandle | None:
        return self._current_navigation

    @property
    def current_timespan(self) -> ActiveTimespan | None:
        return self._current_timespan

    @property
    def gather_steps(self) -> tuple[GatherStep, ...]:
        return tuple(self._gather_steps)

    @property
    def runner_options(self) -> StepRunnerOptionsRegistry:
        return self._runner_options

    # ─────────────────────────────────────────────────────────────────────────
    # Preconditions + bookkeeping
    # ─────────────────────────────────────────────────────────────────────────

    def _assert_idle(self, action: str) -> None:
        if self._current_timespan is not None or self._busy == TIMESPAN:
            raise timespan_in_progress(action)
        if self._current_navigation is not None or self._busy == NAVIGATION:
            raise navigation_in_progress(action)
        if self._busy == SNAPSHOT:
            raise InvalidFlowState(
                action=action,
                reason="Snapshot already in progress",
                suggestion="Await the pending snapshot() first",
                active=SNAPSHOT,
            )

    def _get_next_navigation_flags(self, step_flags: StepFlags | None) -> StepFlags:
        flags = step_flags or StepFlags()
        overrides: dict[str, Any] = {}
        if flags.skip_about_blank is None:
            overrides["skip_about_blank"] = True

        # Repeat navigations are not cold loads: keep storage unless told otherwise.
        is_subsequent_navigation = any(step.gather_mode == NAVIGATION for step in self._gather_steps)
        if is_subsequent_navigation and flags.disable_storage_reset is None:
            overrides["disable_storage_reset"] = True

        return replace(flags, **overrides) if overrides else flags

    def _add_gather_step(self, result: GatherResult, step_flags: StepFlags | None) -> GatherStep:
        step = GatherStep(artifacts=result.artifacts, step_flags=step_flags)
        self._gather_steps.append(step)
        self._runner_options.set(step, result.runner_options)
        logger.info(
            "step_added mode=%s url=%s steps=%d",
            step.gather_mode,
            redact_url(step.url),
            len(self._gather_steps),
        )
        return step

    async def _call_gatherer(self, action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await maybe_await(fn(*args, **kwargs))
        except FlowError:
            raise
        except Exception as exc:
            raise GatherFailure.wrap(action, exc) from exc

    @staticmethod
    def _require_result(action: str, result: Any) -> GatherResult:
        if not isinstance(result, GatherResult):
            raise GatherFailure(
                action=action,
                reason="Gatherer returned no result",
                details={"returned": type(result).__name__},
            )
        try:
            gather_mode_of(result.artifacts)
            final_displayed_url(result.artifacts)
        except ValueError as exc:
            raise GatherFailure(action=action, reason=f"Gatherer returned unusable artifacts: {exc}") from exc
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def navigate(self, requestor: NavigationRequestor, step_flags: StepFlagsInput = None) -> None:
        self._assert_idle("navigate")
        self._busy = NAVIGATION
        try:
            await self._navigate("navigate", requestor, _coerce_flags(step_flags))
        finally:
            self._busy = None

    async def _navigate(self, action: str, requestor: NavigationRequestor, step_flags: StepFlags | None) -> None:
        flags = self._get_next_navigation_flags(step_flags)
        logger.info(
            "navigation_start requestor=%s flags=%s",
            describe_requestor(requestor),
            redact_flags(flags.to_dict()),
        )
        result = await self._call_gatherer(
            action,
            self._services.run_navigation,
            self._page,
            requestor,
            config=self._options.config,
            flags=flags,
        )
        self._add_gather_step(self._require_result(action, result), flags)

    async def start_navigation(self, step_flags: StepFlagsInput = None) -> None:
        """Begin a navigation whose trigger (e.g. a click) happens outside the flow.

        Returns once the gatherer is set up and waiting for the trigger; perform the
        triggering action, then call `end_navigation()`.
        """
        self._assert_idle("start_navigation")
        handshake = NavigationHandshake()
        self._busy = NAVIGATION
        try:
            handshake.start(self._navigate("start_navigation", handshake.request_trigger, _coerce_flags(step_flags)))
            token = await handshake.await_ready()
        except BaseException:
            handshake.abort()
            raise
        finally:
            self._busy = None
        self._current_navigation = handshake.install(token)

    async def end_navigation(self) -> None:
        if self._current_timespan is not None:
            raise timespan_in_progress("end_navigation")
        handle = self._current_navigation
        if self._busy == NAVIGATION:
            if handle is None:
                raise InvalidFlowState(
                    action="end_navigation",
                    reason="Navigation setup still in progress",
                    suggestion="Await start_navigation() first",
                    active=NAVIGATION,
                )
            # Handle installed and still busy: another end_navigation() is running.
            raise InvalidFlowState(
                action="end_navigation",
                reason="Navigation end already in progress",
                suggestion="Await the pending end_navigation() first",
                active=NAVIGATION,
            )
        if handle is None:
            raise InvalidFlowState(
                action="end_navigation",
                reason="No navigation in progress",
                suggestion="Call start_navigation() first",
            )
        self._busy = NAVIGATION
        try:
            await handle.continue_and_await_result()
        finally:
            if self._current_navigation is handle:
                self._current_navigation = None
            self._busy = None

    # ─────────────────────────────────────────────────────────────────────────
    # Timespan + snapshot
    # ─────────────────────────────────────────────────────────────────────────

    async def start_timespan(self, step_flags: StepFlagsInput = None) -> None:
        self._assert_idle("start_timespan")
        flags = _coerce_flags(step_flags)
        self._busy = TIMESPAN
        try:
            timespan = await self._call_gatherer(
                "start_timespan",
                self._services.run_timespan,
                self._page,
                config=self._options.config,
                flags=flags,
            )
        finally:
            self._busy = None
        if timespan is None:
            raise GatherFailure(action="start_timespan", reason="Timespan gatherer returned no handle")
        self._current_timespan = ActiveTimespan(timespan=timespan, step_flags=flags)
        logger.info("timespan_started flags=%s", redact_flags(flags.to_dict() if flags else None))

    async def end_timespan(self) -> None:
        active = self._current_timespan
        if active is None:
            raise InvalidFlowState(
                action="end_timespan",
                reason="No timespan in progress",
                suggestion="Call start_timespan() first",
                active=NAVIGATION if self._current_navigation is not None else None,
            )
        if self._current_navigation is not None:
            raise navigation_in_progress("end_timespan")
        if self._busy == TIMESPAN:
            raise InvalidFlowState(
                action="end_timespan",
                reason="Timespan end already in progress",
                suggestion="Await the pending end_timespan() first",
                active=TIMESPAN,
            )

        self._busy = TIMESPAN
        try:
            result = await self._call_gatherer("end_timespan", active.timespan.end_timespan_gather)
        finally:
            if self._current_timespan is active:
                self._current_timespan = None
            self._busy = None
        self._add_gather_step(self._require_result("end_timespan", result), active.step_flags)

    async def snapshot(self, step_flags: StepFlagsInput = None) -> None:
        self._assert_idle("snapshot")
        flags = _coerce_flags(step_flags)
        self._busy = SNAPSHOT
        try:
            result = await self._call_gatherer(
                "snapshot",
                self._services.run_snapshot,
                self._page,
                config=self._options.config,
                flags=flags,
            )
        finally:
            self._busy = None
        self._add_gather_step(self._require_result("snapshot", result), flags)

    # ─────────────────────────────────────────────────────────────────────────
    # Results
    # ─────────────────────────────────────────────────────────────────────────

    async def create_flow_result(self) -> FlowResult:
        return await audit_gather_steps(
            self._gather_steps,
            initialize_config=self._services.initialize_config,
            score_artifacts=self._services.score_artifacts,
            name=self._options.name,
            config=self._options.config,
            step_options=self._runner_options,
        )

    async def generate_report(self) -> str:
        flow_result = await self.create_flow_result()
        if self._services.render_report is not None:
            return await maybe_await(self._services.render_report(flow_result))
        return render_flow_report(flow_result, max_chars=self._options.report_max_chars)

    async def create_artifacts_json(self) -> FlowArtifacts:
        return FlowArtifacts(gather_steps=list(self._gather_steps), name=self._options.name)
