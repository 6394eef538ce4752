"""Tests for TransactionRegistry.

These tests verify:
1. A registered waiter receives exactly one payload
2. Resolving twice, or resolving an unknown id, is a silent no-op
3. Duplicate registration is rejected
4. A resolve that races ahead of the awaiting task is not lost
5. discard / reject / reject_all bookkeeping
"""

import asyncio
import random

import pytest

from janusstream.error import DuplicateTransactionError, SessionTerminatedError
from janusstream.registry import TransactionRegistry


@pytest.mark.asyncio
class TestRegisterAndResolve:
    """Basic register/resolve behaviour."""

    async def test_resolve_delivers_payload(self) -> None:
        """Test resolve hands the payload to the waiter and removes it."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")

        assert "t1" in registry
        assert len(registry) == 1
        assert registry.resolve("t1", {"janus": "event"}) is True
        assert await waiter == {"janus": "event"}
        assert "t1" not in registry
        assert len(registry) == 0

    async def test_second_resolve_is_noop(self) -> None:
        """Test a transaction resolves at most once."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")

        assert registry.resolve("t1", "first") is True
        assert registry.resolve("t1", "second") is False
        assert await waiter == "first"

    async def test_resolve_unknown_transaction_is_dropped(self) -> None:
        """Test resolving an unknown transaction returns False."""
        registry = TransactionRegistry()
        assert registry.resolve("nobody-waits", {"janus": "event"}) is False
        assert registry.resolve(None, {"janus": "event"}) is False

    async def test_duplicate_registration_rejected(self) -> None:
        """Test registering a pending id twice raises."""
        registry = TransactionRegistry()
        registry.register("t1")

        with pytest.raises(DuplicateTransactionError) as exc_info:
            registry.register("t1")
        assert exc_info.value.transaction_id == "t1"

    async def test_id_can_be_reused_after_resolution(self) -> None:
        """Test an id can be registered again once resolved."""
        registry = TransactionRegistry()
        registry.register("t1")
        registry.resolve("t1", 1)

        waiter = registry.register("t1")
        registry.resolve("t1", 2)
        assert await waiter == 2

    async def test_non_string_membership(self) -> None:
        """Test membership checks ignore non-string ids."""
        registry = TransactionRegistry()
        registry.register("1")
        assert 1 not in registry


@pytest.mark.asyncio
class TestNoLostWakeup:
    """Resolution that happens before the waiter is awaited."""

    async def test_resolve_before_await(self) -> None:
        """Test a payload resolved before the await is not lost."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")
        registry.resolve("t1", "early")

        assert await asyncio.wait_for(waiter, timeout=1.0) == "early"

    async def test_resolve_before_awaiting_task_runs(self) -> None:
        """Test a payload resolved before the waiting task runs is not lost."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")
        task = asyncio.create_task(asyncio.wait_for(waiter, timeout=1.0))

        registry.resolve("t1", "raced")
        assert await task == "raced"

    async def test_interleaved_waiters_get_their_own_payloads(self) -> None:
        """Test each waiter gets only its own payload."""
        registry = TransactionRegistry()
        ids = [f"t{i}" for i in range(50)]
        waiters = {tid: registry.register(tid) for tid in ids}

        order = ids[:]
        random.Random(7).shuffle(order)
        for tid in order:
            await asyncio.sleep(0)
            assert registry.resolve(tid, f"payload-{tid}") is True

        results = await asyncio.gather(*waiters.values())
        assert results == [f"payload-{tid}" for tid in ids]
        assert len(registry) == 0


@pytest.mark.asyncio
class TestDiscardAndReject:
    """Cleanup paths."""

    async def test_discard_cancels_waiter(self) -> None:
        """Test discard cancels and removes the waiter."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")

        registry.discard("t1")
        assert waiter.cancelled()
        assert registry.resolve("t1", "late") is False

    async def test_discard_unknown_is_noop(self) -> None:
        """Test discarding an unknown id does nothing."""
        TransactionRegistry().discard("missing")

    async def test_resolve_after_timeout_is_dropped(self) -> None:
        """Test a late payload after a timeout is dropped."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(waiter, timeout=0.01)
        assert registry.resolve("t1", "late") is False

    async def test_reject(self) -> None:
        """Test reject fails the waiter with the given error."""
        registry = TransactionRegistry()
        waiter = registry.register("t1")

        assert registry.reject("t1", SessionTerminatedError("gone")) is True
        with pytest.raises(SessionTerminatedError):
            await waiter
        assert registry.reject("t1", SessionTerminatedError("again")) is False

    async def test_reject_all(self) -> None:
        """Test reject_all fails every waiter and reports the count."""
        registry = TransactionRegistry()
        waiters = [registry.register(f"t{i}") for i in range(3)]
        registry.resolve("t0", "done")

        assert registry.reject_all(SessionTerminatedError("gone")) == 2
        assert await waiters[0] == "done"
        for waiter in waiters[1:]:
            with pytest.raises(SessionTerminatedError):
                await waiter
        assert registry.pending() == []
