"""
Pending request registry: correlation id -> waiting future.

One registry per ProtocolClient. All access happens on the event loop, so
registration (send path) and fulfillment (dispatch path) never interleave
inside a single operation. Each future is resolved at most once.
"""

import asyncio

from .messages import CommandResponse


class PendingRequests:
    """Single-fulfillment waiters keyed by correlation id."""

    def __init__(self):
        self._waiters: dict[str, asyncio.Future[CommandResponse]] = {}

    def __len__(self) -> int:
        return len(self._waiters)

    def __contains__(self, correlation_id: str) -> bool:
        return correlation_id in self._waiters

    def register(self, correlation_id: str) -> "asyncio.Future[CommandResponse]":
        if correlation_id in self._waiters:
            raise ValueError(f"Correlation id {correlation_id} already pending")
        future: asyncio.Future[CommandResponse] = asyncio.get_running_loop().create_future()
        self._waiters[correlation_id] = future
        return future

    def resolve(self, response: CommandResponse) -> bool:
        """Fulfill the waiter for ``response``. False if none is pending."""
        future = self._waiters.pop(response.correlation_id, None)
        if future is None or future.done():
            return False
        future.set_result(response)
        return True

    def discard(self, correlation_id: str) -> None:
        self._waiters.pop(correlation_id, None)

    def fail_all(self, error: BaseException) -> int:
        """Fail and remove every waiter. Returns how many were still pending."""
        waiters, self._waiters = self._waiters, {}
        failed = 0
        for future in waiters.values():
            if not future.done():
                future.set_exception(error)
                failed += 1
        return failed
