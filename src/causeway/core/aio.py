"""Helpers for calling user handlers that may be sync or async."""

from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it as-is.

    Handlers may be plain functions or coroutines; callers invoke them and
    pass the return value through here.
    """
    if inspect.isawaitable(value):
        return await value
    return value


__all__ = ["maybe_await"]
