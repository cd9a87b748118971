"""
Data model for user flows: step flags, gather steps, runner options and flow results.

Artifacts stay opaque dictionaries owned by the gatherers. The flow core only reads
the gather mode (`GatherContext.gatherMode`) and the displayed URL (`URL.finalDisplayedUrl`).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

NAVIGATION = "navigation"
TIMESPAN = "timespan"
SNAPSHOT = "snapshot"
GATHER_MODES: tuple[str, ...] = (NAVIGATION, TIMESPAN, SNAPSHOT)

_FLAG_KEYS = {
    "name": "name",
    "skipAboutBlank": "skip_about_blank",
    "disableStorageReset": "disable_storage_reset",
}


@dataclass(frozen=True)
class StepFlags:
    """Per-step options; `None` means "not set" so gatherer defaults still apply."""

    name: str | None = None
    skip_about_blank: bool | None = None
    disable_storage_reset: bool | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        for wire_key, attr in _FLAG_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                out[wire_key] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> StepFlags | None:
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise ValueError("stepFlags must be an object")
        known = {attr: data.get(wire_key) for wire_key, attr in _FLAG_KEYS.items()}
        extra = {k: v for k, v in data.items() if k not in _FLAG_KEYS}
        return cls(**known, extra=extra)


def gather_mode_of(artifacts: Mapping[str, Any]) -> str:
    ctx = artifacts.get("GatherContext") if isinstance(artifacts, Mapping) else None
    mode = ctx.get("gatherMode") if isinstance(ctx, Mapping) else None
    if mode not in GATHER_MODES:
        raise ValueError(f"artifacts.GatherContext.gatherMode is missing or unknown: {mode!r}")
    return str(mode)


def final_displayed_url(artifacts: Mapping[str, Any]) -> str:
    url = artifacts.get("URL") if isinstance(artifacts, Mapping) else None
    value = url.get("finalDisplayedUrl") if isinstance(url, Mapping) else None
    if not isinstance(value, str) or not value:
        raise ValueError("artifacts.URL.finalDisplayedUrl is missing")
    return value


@dataclass(frozen=True, eq=False)
class GatherStep:
    """One completed gather step. Compared by identity so it can key weak mappings."""

    artifacts: dict[str, Any]
    step_flags: StepFlags | None = None

    @property
    def gather_mode(self) -> str:
        return gather_mode_of(self.artifacts)

    @property
    def url(self) -> str:
        return final_displayed_url(self.artifacts)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"artifacts": self.artifacts}
        if self.step_flags is not None:
            out["stepFlags"] = self.step_flags.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GatherStep:
        artifacts = data.get("artifacts") if isinstance(data, Mapping) else None
        if not isinstance(artifacts, dict):
            raise ValueError("gather step requires an artifacts object")
        return cls(artifacts=artifacts, step_flags=StepFlags.from_dict(data.get("stepFlags")))


@dataclass
class RunnerOptions:
    config: Any
    computed_cache: dict[Any, Any] = field(default_factory=dict)


@dataclass
class GatherResult:
    artifacts: dict[str, Any]
    runner_options: RunnerOptions


@dataclass(frozen=True)
class FlowStepResult:
    lhr: Any
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"lhr": self.lhr, "name": self.name}


@dataclass(frozen=True)
class FlowResult:
    name: str
    steps: list[FlowStepResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "steps": [s.to_dict() for s in self.steps]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlowResult:
        name = data.get("name") if isinstance(data, Mapping) else None
        raw_steps = data.get("steps") if isinstance(data, Mapping) else None
        if not isinstance(name, str) or not isinstance(raw_steps, list):
            raise ValueError("flow result requires a name and a steps list")
        steps = []
        for raw in raw_steps:
            if not isinstance(raw, Mapping) or not isinstance(raw.get("name"), str):
                raise ValueError("flow result step requires a name")
            steps.append(FlowStepResult(lhr=raw.get("lhr"), name=raw["name"]))
        return cls(name=name, steps=steps)


@dataclass(frozen=True)
class FlowArtifacts:
    gather_steps: list[GatherStep]
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"gatherSteps": [s.to_dict() for s in self.gather_steps]}
        if self.name is not None:
            out["name"] = self.name
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlowArtifacts:
        raw_steps = data.get("gatherSteps") if isinstance(data, Mapping) else None
        if not isinstance(raw_steps, list):
            raise ValueError("flow artifacts require a gatherSteps list")
        name = data.get("name")
        return cls(
            gather_steps=[GatherStep.from_dict(s) for s in raw_steps],
            name=name if isinstance(name, str) else None,
        )


# A navigation requestor is a URL, or a callable that causes the navigation.
NavigationRequestor = Union[str, Callable[[], Any]]


class TimespanGather(Protocol):
    def end_timespan_gather(self) -> GatherResult | Awaitable[GatherResult]: ...


class NavigationRunner(Protocol):
    def __call__(
        self,
        page: Any,
        requestor: NavigationRequestor,
        *,
        config: dict[str, Any] | None,
        flags: StepFlags | None,
    ) -> GatherResult | Awaitable[GatherResult]: ...


class TimespanRunner(Protocol):
    def __call__(
        self,
        page: Any,
        *,
        config: dict[str, Any] | None,
        flags: StepFlags | None,
    ) -> TimespanGather | Awaitable[TimespanGather]: ...


class SnapshotRunner(Protocol):
    def __call__(
        self,
        page: Any,
        *,
        config: dict[str, Any] | None,
        flags: StepFlags | None,
    ) -> GatherResult | Awaitable[GatherResult]: ...


class ConfigInitializer(Protocol):
    def __call__(
        self,
        gather_mode: str,
        config_json: dict[str, Any] | None = None,
        step_flags: StepFlags | None = None,
    ) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]: ...


class ArtifactScorer(Protocol):
    def __call__(self, artifacts: dict[str, Any], runner_options: RunnerOptions) -> Any: ...


class ReportRenderer(Protocol):
    def __call__(self, flow_result: FlowResult) -> str | Awaitable[str]: ...


@dataclass(slots=True)
class FlowServices:
    """External collaborators the flow core drives but does not implement."""

    run_navigation: NavigationRunner
    run_timespan: TimespanRunner
    run_snapshot: SnapshotRunner
    initialize_config: ConfigInitializer
    score_artifacts: ArtifactScorer
    render_report: ReportRenderer | None = None
