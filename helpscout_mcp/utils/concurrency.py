"""Fan-out helpers: run every branch to completion, then fold the outcomes."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """One branch's result: exactly one of ``value`` / ``error`` is meaningful."""

    key: Any
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle_all(keys: Iterable[Any], awaitables: Iterable[Awaitable[T]]) -> List[Outcome[T]]:
    """
    Await every branch concurrently; a failing branch never cancels its siblings.

    Cancellation of the caller itself still propagates.
    """
    keys = list(keys)
    results = await asyncio.gather(*awaitables, return_exceptions=True)

    outcomes: List[Outcome[T]] = []
    for key, result in zip(keys, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            outcomes.append(Outcome(key=key, error=result))
        else:
            outcomes.append(Outcome(key=key, value=result))
    return outcomes
