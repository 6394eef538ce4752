"""Janus session lifecycle and the long-poll event loop.

A ``JanusSession`` creates a session on the gateway, attaches a streaming
handle, and runs one poll task that long-polls the session's event endpoint.
Plugin events fetched by the poll task are handed to the transaction
registry, which wakes whichever handle operation is waiting for them.

The poll task heals itself:

- a failed poll (transport error, malformed envelope, ``error``/``timeout``
  status) is retried after ``PollPolicy.backoff`` seconds;
- ``failure_threshold`` consecutive failures reinitialise the session, and
  the reinitialisation starts a replacement poll task;
- after ``max_reinits`` reinitialisations without a healthy poll in between,
  the session is destroyed and stays terminated.

Any healthy poll resets both counters.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Self

from janusstream.config import JanusConfig
from janusstream.error import (
    JanusClientError,
    ProtocolFailure,
    SessionNotCreatedError,
    SessionTerminatedError,
    TransportError,
)
from janusstream.handle import Handle, StreamingHandle
from janusstream.ids import TransactionIdSource, new_transaction_id
from janusstream.registry import TransactionRegistry
from janusstream.transport import HttpTransport, JanusTransport
from janusstream.wire import (
    AttachResult,
    Envelope,
    SessionCreateResult,
    expect_reply,
)

logger = logging.getLogger(__name__)

STREAMING_PLUGIN: Final[str] = "janus.plugin.streaming"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SESSION_CREATED = "session_created"
    HANDLE_ATTACHED = "handle_attached"
    POLLING = "polling"
    FAILING = "failing"
    REINITIALIZING = "reinitializing"
    TERMINATED = "terminated"


@dataclass(frozen=True, slots=True)
class WatchResult:
    """A viewer handle and the SDP offer it received (``None`` on failure)."""

    handle: StreamingHandle
    sdp: str | None


class JanusSession:
    """Client-side Janus session with a self-healing event loop.

    Example:
        ```python
        config = JanusConfig(host="localhost:8088", secret="s3cret")
        async with JanusSession(config) as janus:
            created = await janus.mount(audio=True, audioport=5002, audiopt=111,
                                        audiortpmap="opus/48000/2")
            viewer = await janus.watch(created["stream"]["id"])
            print(viewer.sdp)
        ```
    """

    def __init__(
        self,
        config: JanusConfig,
        *,
        transport: JanusTransport | None = None,
        registry: TransactionRegistry | None = None,
        id_source: TransactionIdSource = new_transaction_id,
    ) -> None:
        self.config = config
        self._own_transport = transport is None
        self.transport: JanusTransport = transport or HttpTransport(
            scheme=config.scheme,
            request_timeout=config.request_timeout,
            poll_timeout=config.poll_timeout,
            id_source=id_source,
        )
        self.registry = registry if registry is not None else TransactionRegistry()
        self.id_source = id_source

        self.session_id: int | str | None = None
        self.handle: StreamingHandle | None = None
        self.handles: set[Handle] = set()
        self.state = SessionState.UNINITIALIZED
        self.consecutive_failures = 0
        self.reinit_count = 0

        self._killed = asyncio.Event()
        self._poll_task: asyncio.Task[None] | None = None
        self._setup_lock = asyncio.Lock()
        # Transactions registered through this session, failed on termination
        self._transactions: set[str] = set()

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def secret(self) -> str:
        return self.config.secret

    @property
    def killed(self) -> bool:
        return self._killed.is_set()

    @property
    def poll_task(self) -> asyncio.Task[None] | None:
        return self._poll_task

    def __repr__(self) -> str:
        return f"JanusSession(host={self.host!r}, id={self.session_id!r}, state={self.state.value})"

    async def __aenter__(self) -> Self:
        await self.init()
        return self

    async def __aexit__(self, *args: object) -> None:
        self.kill()
        try:
            await self.delete()
        except JanusClientError:
            logger.exception("Error deleting janus session on %s", self.host)
        await self.close()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def request(self, path: str, body: dict[str, Any]) -> Envelope:
        """POST a command and parse the reply envelope.

        Raises:
            TransportError: If the gateway cannot be reached.
            MalformedResponseError: If the reply is not an envelope.
        """
        raw = await self.transport.post(self.host, path, body, self.secret)
        return Envelope.from_json(raw)

    def session_path(self) -> str:
        if self.session_id is None:
            raise SessionNotCreatedError(f"No Janus session on {self.host}")
        return str(self.session_id)

    def register_transaction(self, transaction_id: str) -> asyncio.Future[Any]:
        """Register a waiter for ``transaction_id`` in this session's registry."""
        waiter = self.registry.register(transaction_id)
        self._transactions.add(transaction_id)
        waiter.add_done_callback(lambda _: self._transactions.discard(transaction_id))
        return waiter

    def forget_handle(self, handle: Handle) -> None:
        """Drop ``handle`` and mark it detached so it can no longer send."""
        handle.detached = True
        self.handles.discard(handle)
        if self.handle is handle:
            self.handle = None

    def _forget_handles(self) -> None:
        for handle in list(self.handles):
            self.forget_handle(handle)
        if self.handle is not None:
            self.forget_handle(self.handle)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def init(self) -> bool:
        """Create the session, attach the streaming handle and start polling.

        Errors raised while talking to the gateway are logged, not raised.
        The poll task is started even if setup failed; its failure policy
        takes over from there. Calling ``init`` on a killed or terminated
        session revives it with fresh failure counters.

        Returns:
            True if both the session and the handle were created.
        """
        self._killed.clear()
        self.consecutive_failures = 0
        self.reinit_count = 0
        self.state = SessionState.UNINITIALIZED
        return await self._setup()

    async def _setup(self) -> bool:
        ready = False
        async with self._setup_lock:
            try:
                if await self.create_session():
                    handle = await self.attach_handle()
                    if handle is not None:
                        self.handle = handle
                        ready = True
            except Exception:
                logger.exception("Janus off on %s: session setup failed", self.host)
        await self._start_polling()
        return ready

    async def create_session(self) -> bool:
        try:
            reply = expect_reply(await self.request("", {"janus": "create"}))
            result = SessionCreateResult.from_envelope(reply)
        except ProtocolFailure as e:
            logger.error("Error creating janus session on %s: %s", self.host, e)
            return False

        self.session_id = result.id
        self.state = SessionState.SESSION_CREATED
        logger.info("Created janus session %s on %s", self.session_id, self.host)
        return True

    async def attach_handle(self, plugin: str = STREAMING_PLUGIN) -> StreamingHandle | None:
        """Attach a new handle to ``plugin``.

        Raises:
            SessionNotCreatedError: If there is no session yet.
        """
        path = self.session_path()
        try:
            reply = expect_reply(await self.request(path, {"janus": "attach", "plugin": plugin}))
            result = AttachResult.from_envelope(reply)
        except ProtocolFailure as e:
            logger.error("Error attaching janus handle to %s: %s", plugin, e)
            return None

        handle = StreamingHandle(self, result.id, plugin)
        self.handles.add(handle)
        if self.state is SessionState.SESSION_CREATED:
            self.state = SessionState.HANDLE_ATTACHED
        logger.info("Attached handle %s (%s) to session %s", result.id, plugin, self.session_id)
        return handle

    async def destroy_session(self) -> bool:
        """Destroy the session on the gateway, forget its handles and stop
        polling.

        Called from outside the poll task, the running poll is cancelled so it
        cannot count the missing session as a failure and reinitialise.
        """
        path = self.session_path()
        try:
            expect_reply(await self.request(path, {"janus": "destroy"}))
        except ProtocolFailure as e:
            logger.error("Error destroying janus session %s: %s", self.session_id, e)
            return False

        logger.info("Destroyed janus session %s on %s", self.session_id, self.host)
        self.session_id = None
        self._forget_handles()
        if self.state is not SessionState.TERMINATED:
            self.state = SessionState.UNINITIALIZED
        self.kill()
        await self._cancel_poll_task()
        self._reject_transactions(SessionTerminatedError(f"Janus session on {self.host} destroyed"))
        return True

    async def delete(self) -> bool | None:
        """Destroy the session if one exists.

        Returns None without contacting the gateway when there is no session,
        and None if the gateway refused; True once destroyed.
        """
        if self.session_id is None:
            logger.info("Janus is not initiated on %s", self.host)
            return None
        if not await self.destroy_session():
            return None
        return True

    def kill(self) -> None:
        """Ask the poll loop to stop at its next iteration."""
        if not self._killed.is_set():
            logger.info("Killed janus session on %s", self.host)
        self._killed.set()

    async def join(self) -> None:
        """Wait until no poll task is running, following reinitialisations."""
        while (task := self._poll_task) is not None:
            await asyncio.wait({task})
            if self._poll_task is task:
                return

    async def close(self) -> None:
        """Stop polling now, cancelling any in-flight long-poll, and release
        the transport if this session created it."""
        self.kill()
        await self._cancel_poll_task()
        if self._own_transport:
            await self.transport.close()

    # -------------------------------------------------------------------------
    # Poll loop
    # -------------------------------------------------------------------------

    async def _cancel_poll_task(self) -> None:
        task = self._poll_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})

    async def _start_polling(self) -> None:
        """Start a poll task, replacing the running one."""
        previous = self._poll_task
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            previous.cancel()
            try:
                await previous
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise

        if self.session_id is not None:
            self.state = SessionState.POLLING
        self._poll_task = asyncio.create_task(
            self._poll_loop(), name=f"janus-poll-{self.host}"
        )

    async def _poll_loop(self) -> None:
        policy = self.config.poll
        try:
            while not self._killed.is_set():
                logger.debug("Janus worker polling %s", self.host)

                if self.consecutive_failures >= policy.failure_threshold:
                    if self.reinit_count >= policy.max_reinits:
                        await self._terminate()
                    else:
                        await self._reinitialize()
                    return

                envelope = await self._poll_once()
                if envelope is None:
                    self.consecutive_failures += 1
                    self.state = SessionState.FAILING
                    logger.warning(
                        "Error polling janus streaming on %s [%d/%d]",
                        self.host, self.consecutive_failures, policy.failure_threshold,
                    )
                    await self._backoff(policy.backoff)
                    continue

                self.consecutive_failures = 0
                self.reinit_count = 0
                self.state = SessionState.POLLING
                if envelope.plugindata is not None:
                    self.registry.resolve(envelope.transaction, envelope)
        except Exception:
            logger.exception("Error in janus poll loop on %s", self.host)
        logger.debug("Janus worker on %s stopped", self.host)

    async def _poll_once(self) -> Envelope | None:
        """Fetch one event. Returns None if the poll counts as a failure."""
        try:
            raw = await self.transport.get(self.host, self.session_path(), self.secret)
            envelope = Envelope.from_json(raw)
        except (TransportError, ProtocolFailure, SessionNotCreatedError) as e:
            logger.warning("Poll on %s failed: %s", self.host, e)
            return None

        if envelope.is_failure:
            logger.warning("Poll on %s returned %s", self.host, envelope.describe_failure())
            return None
        return envelope

    async def _backoff(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early if killed."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._killed.wait(), timeout=delay)

    async def _reinitialize(self) -> None:
        self.reinit_count += 1
        self.consecutive_failures = 0
        self.state = SessionState.REINITIALIZING
        logger.warning(
            "Janus on %s failed %d polls in a row, reinitialising (%d/%d)",
            self.host, self.config.poll.failure_threshold,
            self.reinit_count, self.config.poll.max_reinits,
        )
        # The old session is abandoned along with its handles
        self.session_id = None
        self._forget_handles()
        await self._setup()

    async def _terminate(self) -> None:
        self.state = SessionState.TERMINATED
        logger.error(
            "Janus on %s still failing after %d reinits, terminating session",
            self.host, self.reinit_count,
        )
        self._killed.set()
        if self.session_id is not None:
            try:
                await self.destroy_session()
            except JanusClientError as e:
                logger.error("Error destroying terminated janus session on %s: %s", self.host, e)

        self._reject_transactions(SessionTerminatedError(f"Janus session on {self.host} terminated"))

    def _reject_transactions(self, reason: SessionTerminatedError) -> None:
        for transaction_id in list(self._transactions):
            self.registry.reject(transaction_id, reason)

    # -------------------------------------------------------------------------
    # Streaming shortcuts on the primary handle
    # -------------------------------------------------------------------------

    def _primary(self) -> StreamingHandle:
        if self.handle is None:
            raise SessionNotCreatedError(f"No streaming handle attached on {self.host}")
        return self.handle

    async def mount(self, **fields: Any) -> dict[str, Any] | None:
        """Create a mountpoint on the primary handle."""
        return await self._primary().create(**fields)

    async def list(self) -> list[dict[str, Any]] | None:
        return await self._primary().list()

    async def destroy(self, mountpoint_id: int | str) -> dict[str, Any] | None:
        """Destroy a mountpoint (not the session; see ``delete``)."""
        return await self._primary().destroy(mountpoint_id)

    async def watch(self, mountpoint_id: int | str, *, timeout: float | None = None) -> WatchResult | None:
        """Attach a dedicated viewer handle and ask it to watch a mountpoint."""
        handle = await self.attach_handle()
        if handle is None:
            return None
        sdp = await handle.watch(mountpoint_id, timeout=timeout)
        return WatchResult(handle=handle, sdp=sdp)
