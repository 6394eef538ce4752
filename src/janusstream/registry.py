"""Transaction registry correlating poll-channel events with their callers.

A caller that expects an asynchronous answer registers its transaction id
before sending the request, then awaits the returned future. The poll loop
calls ``resolve`` with every plugin event it receives; the event reaches the
waiter with the same transaction id, or is dropped if nobody is waiting.

None of the methods await, so on a single event loop each call is atomic with
respect to the others: a waiter registered before the request is sent cannot
miss an event that the poll loop resolves afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from janusstream.error import DuplicateTransactionError

logger = logging.getLogger(__name__)


class TransactionRegistry:
    """Map of transaction id to a single-resolution future."""

    __slots__ = ("_waiters",)

    def __init__(self) -> None:
        self._waiters: dict[str, asyncio.Future[Any]] = {}

    def register(self, transaction_id: str) -> asyncio.Future[Any]:
        """Create and store a waiter for ``transaction_id``.

        Raises:
            DuplicateTransactionError: If a waiter for the id is still pending.
        """
        existing = self._waiters.get(transaction_id)
        if existing is not None and not existing.done():
            raise DuplicateTransactionError(transaction_id)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters[transaction_id] = future
        return future

    def resolve(self, transaction_id: str | None, payload: Any) -> bool:
        """Deliver ``payload`` to the waiter for ``transaction_id`` and remove it.

        Returns:
            True if a waiter received the payload, False if it was dropped.
        """
        if transaction_id is None:
            return False
        future = self._waiters.pop(transaction_id, None)
        if future is None or future.done():
            logger.debug("No waiter for transaction %s, dropping event", transaction_id)
            return False
        future.set_result(payload)
        return True

    def reject(self, transaction_id: str, exc: BaseException) -> bool:
        """Fail the waiter for ``transaction_id`` with ``exc`` and remove it."""
        future = self._waiters.pop(transaction_id, None)
        if future is None or future.done():
            return False
        future.set_exception(exc)
        return True

    def discard(self, transaction_id: str) -> None:
        """Forget a waiter without completing it."""
        future = self._waiters.pop(transaction_id, None)
        if future is not None and not future.done():
            future.cancel()

    def reject_all(self, exc: BaseException) -> int:
        """Fail every pending waiter with ``exc``. Returns how many were failed."""
        waiters, self._waiters = self._waiters, {}
        failed = 0
        for future in waiters.values():
            if not future.done():
                future.set_exception(exc)
                failed += 1
        return failed

    def pending(self) -> list[str]:
        """Transaction ids that still have a waiter."""
        return [tid for tid, future in self._waiters.items() if not future.done()]

    def __contains__(self, transaction_id: object) -> bool:
        if not isinstance(transaction_id, str):
            return False
        future = self._waiters.get(transaction_id)
        return future is not None and not future.done()

    def __len__(self) -> int:
        return len(self.pending())
