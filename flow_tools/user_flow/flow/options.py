"""Side table pairing live gather steps with the runner options they were gathered with.

Runner options carry a computation cache that is only valid while the page context that
produced it is alive, so the table holds its keys weakly: dropping a step drops its
options, and the table never keeps a step alive on its own.
"""

from __future__ import annotations

import weakref
from enum import Enum

from ..types import GatherStep, RunnerOptions


class OptionsSource(str, Enum):
    LIVE = "live"
    RECONSTRUCTED = "reconstructed"


class StepRunnerOptionsRegistry:
    def __init__(self) -> None:
        self._options: weakref.WeakKeyDictionary[GatherStep, RunnerOptions] = weakref.WeakKeyDictionary()

    def set(self, step: GatherStep, options: RunnerOptions) -> None:
        self._options[step] = options

    def get(self, step: GatherStep) -> RunnerOptions | None:
        return self._options.get(step)

    def discard(self, step: GatherStep) -> None:
        self._options.pop(step, None)

    def __contains__(self, step: object) -> bool:
        try:
            return step in self._options
        except TypeError:
            return False

    def __len__(self) -> int:
        return len(self._options)
