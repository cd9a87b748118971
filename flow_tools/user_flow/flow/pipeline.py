"""Reduce an ordered list of gather steps into one flow result.

Steps are audited strictly in list order. Runner options come from the live registry
when the step is still live; otherwise (e.g. the steps were deserialized) they are
rebuilt from the flow config and the step's own flags, with a fresh computed cache.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import SplitResult, urlsplit

from ..redaction import redact_url
from ..types import (
    NAVIGATION,
    SNAPSHOT,
    TIMESPAN,
    ArtifactScorer,
    ConfigInitializer,
    FlowResult,
    FlowStepResult,
    GatherStep,
    RunnerOptions,
    final_displayed_url,
    gather_mode_of,
)
from .errors import EmptyFlow, StepAuditFailed
from .helpers import maybe_await
from .options import OptionsSource, StepRunnerOptionsRegistry

logger = logging.getLogger("flow.user_flow.pipeline")

_MODE_LABELS = {
    NAVIGATION: "Navigation report",
    TIMESPAN: "Timespan report",
    SNAPSHOT: "Snapshot report",
}

# Schemes whose empty path normalizes to "/" (WHATWG "special" schemes).
_SPECIAL_SCHEMES = {"http", "https", "ws", "wss", "ftp", "file"}


def _parse_url(url: str) -> SplitResult:
    if not isinstance(url, str) or not url.strip():
        raise ValueError(f"Invalid URL: {url!r}")
    parts = urlsplit(url.strip())
    if not parts.scheme:
        raise ValueError(f"Invalid URL: {url!r}")
    return parts


def shorten_url(long_url: str) -> str:
    """Host + path; query and fragment are dropped."""
    parts = _parse_url(long_url)
    path = parts.path
    if not path and parts.scheme.lower() in _SPECIAL_SCHEMES:
        path = "/"
    return f"{parts.hostname or ''}{path}"


def url_host(url: str) -> str:
    return _parse_url(url).hostname or ""


def get_default_step_name(artifacts: Mapping[str, Any]) -> str:
    label = _MODE_LABELS[gather_mode_of(artifacts)]
    return f"{label} ({shorten_url(final_displayed_url(artifacts))})"


def get_step_name(step: GatherStep) -> str:
    explicit = step.step_flags.name if step.step_flags is not None else None
    return explicit or get_default_step_name(step.artifacts)


def get_default_flow_name(gather_steps: Sequence[GatherStep]) -> str:
    if not gather_steps:
        raise _empty_flow()
    return f"User flow ({url_host(gather_steps[0].url)})"


def _empty_flow() -> EmptyFlow:
    return EmptyFlow(
        action="audit_gather_steps",
        reason="Need at least one step before getting the result",
        suggestion="Run navigate(), snapshot() or a timespan before creating the flow result",
    )


async def resolve_runner_options(
    step: GatherStep,
    *,
    initialize_config: ConfigInitializer,
    config: dict[str, Any] | None = None,
    step_options: StepRunnerOptionsRegistry | None = None,
) -> tuple[RunnerOptions, OptionsSource]:
    live = step_options.get(step) if step_options is not None else None
    if live is not None:
        return live, OptionsSource.LIVE

    # The initializer applies step flags over the flow-level config.
    initialized = await maybe_await(initialize_config(step.gather_mode, config, step.step_flags))
    if not isinstance(initialized, Mapping) or "config" not in initialized:
        raise TypeError("initialize_config must return a mapping with a 'config' entry")
    return RunnerOptions(config=initialized["config"], computed_cache={}), OptionsSource.RECONSTRUCTED


async def audit_gather_steps(
    gather_steps: Sequence[GatherStep],
    *,
    initialize_config: ConfigInitializer,
    score_artifacts: ArtifactScorer,
    name: str | None = None,
    config: dict[str, Any] | None = None,
    step_options: StepRunnerOptionsRegistry | None = None,
) -> FlowResult:
    """Score every gather step in order and assemble the flow result."""
    if not gather_steps:
        raise _empty_flow()

    steps: list[FlowStepResult] = []
    for index, gather_step in enumerate(gather_steps):
        step_name = get_step_name(gather_step)
        runner_options, source = await resolve_runner_options(
            gather_step,
            initialize_config=initialize_config,
            config=config,
            step_options=step_options,
        )
        logger.debug("step_options index=%d name=%s source=%s", index, step_name, source.value)

        result = await maybe_await(score_artifacts(gather_step.artifacts, runner_options))
        if result is None:
            raise StepAuditFailed(
                action="audit_gather_steps",
                reason=f'Step "{step_name}" did not return a result',
                suggestion="Check that the scorer supports this gather mode",
                details={"index": index, "gatherMode": gather_step.gather_mode},
                step_name=step_name,
            )
        steps.append(FlowStepResult(lhr=result, name=step_name))

    flow_name = name or get_default_flow_name(gather_steps)
    logger.info(
        "flow_audited name=%s steps=%d first_url=%s",
        flow_name,
        len(steps),
        redact_url(gather_steps[0].url),
    )
    return FlowResult(name=flow_name, steps=steps)
