"""Two-phase handshake for navigations triggered by an outside action (e.g. a user click).

The navigation gatherer receives `NavigationHandshake.request_trigger` as its requestor.
Calling it marks the handshake ready and parks the gatherer until `TriggerToken.fire()`:

    WAITING_FOR_READY -> READY -> FIRED
            |              |
            +--> FAILED <--+

A navigation failure is routed by when it happened. While `await_ready()` is still
pending it rejects that wait (so `start_navigation()` raises and the caller never gets a
handle). Once ready has resolved, whether or not `install()` has run yet, it is kept on
the result task and re-raised by `NavigationHandle.continue_and_await_result()`; a
failure between ready and install therefore still reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum

from .errors import GatherFailure, InvalidFlowState

logger = logging.getLogger("flow.user_flow.handshake")


class HandshakeState(str, Enum):
    WAITING_FOR_READY = "waiting_for_ready"
    READY = "ready"
    FIRED = "fired"
    FAILED = "failed"


class TriggerToken:
    """Single-use permission to let the parked navigation continue."""

    def __init__(self, handshake: NavigationHandshake) -> None:
        self._handshake = handshake

    def fire(self) -> Awaitable[None]:
        return self._handshake.fire()


@dataclass
class NavigationHandle:
    token: TriggerToken

    async def continue_and_await_result(self) -> None:
        await self.token.fire()


class NavigationHandshake:
    def __init__(self) -> None:
        loop = asyncio.get_running_loop()
        self.state = HandshakeState.WAITING_FOR_READY
        self.installed = False
        self._ready: asyncio.Future[None] = loop.create_future()
        self._continue: asyncio.Future[None] = loop.create_future()
        self._result: asyncio.Future[None] | None = None

    async def request_trigger(self) -> None:
        """Requestor handed to the navigation gatherer; returns once the trigger fired."""
        if self.state is not HandshakeState.WAITING_FOR_READY:
            raise InvalidFlowState(
                action="request_trigger",
                reason=f"Trigger already requested (state={self.state.value})",
                active="navigation",
            )
        self.state = HandshakeState.READY
        if not self._ready.done():
            self._ready.set_result(None)
        await self._continue

    def start(self, navigation: Awaitable[None]) -> None:
        self._result = asyncio.ensure_future(self._run(navigation))

    async def _run(self, navigation: Awaitable[None]) -> None:
        try:
            await navigation
        except asyncio.CancelledError:
            self.state = HandshakeState.FAILED
            if not self._ready.done():
                self._ready.cancel()
            raise
        except Exception as exc:
            if self._route_failure(exc):
                raise
            return
        if not self._ready.done():
            # The gatherer finished without ever asking for the trigger.
            self.state = HandshakeState.FAILED
            self._ready.set_exception(
                GatherFailure(
                    action="start_navigation",
                    reason="Navigation completed without requesting a trigger",
                    suggestion="Pass the handshake requestor through to the page navigation",
                )
            )

    def _route_failure(self, exc: Exception) -> bool:
        """Return True when the failure belongs to the result task.

        That is the case once ready has resolved, even if `install()` has not run yet;
        rejecting the already-settled ready future would drop the error.
        """
        self.state = HandshakeState.FAILED
        if self.installed or self._ready.done():
            logger.warning("navigation_failed_after_ready error=%s", exc)
            return True
        logger.warning("navigation_failed_before_ready error=%s", exc)
        self._ready.set_exception(exc)
        return False

    async def await_ready(self) -> TriggerToken:
        await self._ready
        return TriggerToken(self)

    def install(self, token: TriggerToken) -> NavigationHandle:
        self.installed = True
        return NavigationHandle(token=token)

    def abort(self) -> None:
        if self._result is not None and not self._result.done():
            self._result.cancel()

    def fire(self) -> Awaitable[None]:
        """Release the parked navigation and return its result task. Valid once, from READY.

        A navigation that already failed after ready hands back its finished result task,
        so awaiting it re-raises the failure.
        """
        result = self._result
        if (
            self.state is HandshakeState.FAILED
            and result is not None
            and result.done()
            and not result.cancelled()
            and result.exception() is not None
        ):
            return result
        if self.state is not HandshakeState.READY or self._result is None:
            raise InvalidFlowState(
                action="fire",
                reason=f"Navigation trigger is not ready (state={self.state.value})",
                active="navigation",
            )
        self.state = HandshakeState.FIRED
        self._continue.set_result(None)
        return self._result
