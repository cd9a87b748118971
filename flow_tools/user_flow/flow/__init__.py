"""User flow core (session state machine + step audit pipeline).

The page gatherers, the scorer, config initialization and report rendering are
collaborators passed in through `FlowServices`; this package only sequences them.
"""

from __future__ import annotations

from .errors import EmptyFlow, FlowError, GatherFailure, InvalidFlowState, StepAuditFailed
from .handshake import HandshakeState, NavigationHandle, NavigationHandshake, TriggerToken
from .options import OptionsSource, StepRunnerOptionsRegistry
from .pipeline import audit_gather_steps, get_default_step_name, shorten_url
from .session import FlowSession

__all__ = [
    "EmptyFlow",
    "FlowError",
    "FlowSession",
    "GatherFailure",
    "HandshakeState",
    "InvalidFlowState",
    "NavigationHandle",
    "NavigationHandshake",
    "OptionsSource",
    "StepAuditFailed",
    "StepRunnerOptionsRegistry",
    "TriggerToken",
    "audit_gather_steps",
    "get_default_step_name",
    "shorten_url",
]
