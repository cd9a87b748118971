from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Collaborators may be plain functions or coroutine functions."""
    if inspect.isawaitable(value):
        return await value
    return value
