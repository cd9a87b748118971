"""Structured errors raised by the flow core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(eq=False)
class FlowError(Exception):
    """Base flow error with enough context for a caller to halt and report."""

    kind: ClassVar[str] = "FlowError"

    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        text = f"[{self.kind}] {self.action} failed: {self.reason}"
        if self.suggestion:
            text += f". Suggestion: {self.suggestion}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "kind": self.kind,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


@dataclass(eq=False)
class InvalidFlowState(FlowError):
    """An operation conflicts with the active slot (or needs one that is not active)."""

    kind: ClassVar[str] = "InvalidFlowState"

    active: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "active": self.active}


@dataclass(eq=False)
class GatherFailure(FlowError):
    kind: ClassVar[str] = "GatherFailure"

    @classmethod
    def wrap(cls, action: str, exc: BaseException) -> GatherFailure:
        return cls(
            action=action,
            reason=str(exc) or type(exc).__name__,
            suggestion="Inspect the page state; the flow keeps every step recorded so far",
            details={"exception": type(exc).__name__},
        )


@dataclass(eq=False)
class EmptyFlow(FlowError):
    kind: ClassVar[str] = "EmptyFlow"


@dataclass(eq=False)
class StepAuditFailed(FlowError):
    kind: ClassVar[str] = "StepAuditFailed"

    step_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "step": self.step_name}


def timespan_in_progress(action: str) -> InvalidFlowState:
    return InvalidFlowState(
        action=action,
        reason="Timespan already in progress",
        suggestion="Call end_timespan() first",
        active="timespan",
    )


def navigation_in_progress(action: str) -> InvalidFlowState:
    return InvalidFlowState(
        action=action,
        reason="Navigation already in progress",
        suggestion="Call end_navigation() first",
        active="navigation",
    )
