"""Small asyncio helpers shared across subsystems."""

from __future__ import annotations

import inspect
from typing import Awaitable, TypeVar, Union

T = TypeVar("T")


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """Return ``value``, awaiting it first when it is awaitable.

    Plugin factories and driver factories may be plain or async callables.
    """
    if inspect.isawaitable(value):
        return await value
    return value
