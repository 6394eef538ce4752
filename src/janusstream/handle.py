"""Plugin handles attached to a Janus session.

A handle is the endpoint through which plugin commands are sent. Most
streaming commands are answered in the POST reply itself; ``watch`` is
answered later by an event on the session's poll channel and is correlated
through the session's transaction registry.

Remote failures do not raise: operations log the failure and return ``None``
(or ``False`` for yes/no operations). A ``TransportError`` on the caller's own
request does propagate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from janusstream.error import (
    MissingArtifactError,
    ProtocolFailure,
    SessionNotCreatedError,
    SessionTerminatedError,
)
from janusstream.wire import Envelope, EventEnvelope, expect_reply

if TYPE_CHECKING:
    from janusstream.session import JanusSession

logger = logging.getLogger(__name__)


class Handle:
    """A plugin handle. Holds a non-owning reference to its session."""

    def __init__(self, session: JanusSession, handle_id: int | str, plugin: str) -> None:
        self.session = session
        self.handle_id = handle_id
        self.plugin = plugin
        self.detached = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.handle_id!r}, plugin={self.plugin!r})"

    @property
    def path(self) -> str:
        if self.detached:
            raise SessionNotCreatedError(
                f"Handle {self.handle_id} is detached from its Janus session"
            )
        if self.session.session_id is None:
            raise SessionNotCreatedError(
                f"Handle {self.handle_id} used without a Janus session"
            )
        return f"{self.session.session_id}/{self.handle_id}"

    async def send(
        self,
        body: dict[str, Any],
        *,
        jsep: dict[str, Any] | None = None,
        transaction: str | None = None,
    ) -> Envelope:
        """Send a plugin message and return the parsed reply."""
        return await self.session.request(self.path, _message(body, jsep, transaction))

    async def send_correlated(
        self,
        body: dict[str, Any],
        *,
        jsep: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Envelope:
        """Send a plugin message whose answer arrives on the poll channel.

        The transaction is registered before the request goes out so the
        event cannot arrive ahead of its waiter.

        Raises:
            ProtocolFailure: If the gateway does not acknowledge the request.
            asyncio.TimeoutError: If ``timeout`` elapses before the event.
            SessionTerminatedError: If the session gives up while waiting.
        """
        path = self.path
        transaction = self.session.id_source()
        waiter = self.session.register_transaction(transaction)
        try:
            reply = await self.session.request(path, _message(body, jsep, transaction))
            expect_reply(reply, allow_ack=True)
            if reply.is_success and reply.plugindata is not None:
                # Answered synchronously, no event will follow.
                self.session.registry.discard(transaction)
                return reply
            return await asyncio.wait_for(waiter, timeout)
        except BaseException:
            self.session.registry.discard(transaction)
            raise

    async def trickle(self, candidate: dict[str, Any] | None) -> bool:
        """Send an ICE candidate. ``None`` signals end of candidates."""
        try:
            reply = await self.session.request(self.path, {
                "janus": "trickle",
                "candidate": candidate if candidate is not None else {"completed": True},
            })
            expect_reply(reply, allow_ack=True)
        except ProtocolFailure as e:
            logger.error("Error sending trickle candidate on handle %s: %s", self.handle_id, e)
            return False
        return True

    async def detach(self) -> bool:
        """Detach this handle from the plugin and forget it."""
        try:
            expect_reply(await self.session.request(self.path, {"janus": "detach"}))
        except ProtocolFailure as e:
            logger.error("Error detaching handle %s: %s", self.handle_id, e)
            return False
        self.session.forget_handle(self)
        logger.info("Detached handle %s", self.handle_id)
        return True


class StreamingHandle(Handle):
    """Handle on ``janus.plugin.streaming``."""

    async def create(self, **fields: Any) -> dict[str, Any] | None:
        """Create a mountpoint. Fields are forwarded in the request body.

        ``type`` defaults to ``"rtp"``; fields set to ``None`` are omitted.
        Returns the plugin data (``{"streaming": "created", "stream": {...}}``).
        """
        body = {"request": "create", "type": "rtp"}
        body.update({k: v for k, v in fields.items() if v is not None})
        try:
            reply = expect_reply(await self.send(body))
            return _plugin_result(reply)
        except ProtocolFailure as e:
            logger.error("Error creating janus streaming mountpoint: %s", e)
            return None

    async def watch(self, mountpoint_id: int | str, *, timeout: float | None = None) -> str | None:
        """Ask to watch a mountpoint and return the SDP offer from the gateway."""
        try:
            envelope = await self.send_correlated(
                {"request": "watch", "id": mountpoint_id}, timeout=timeout
            )
            event = EventEnvelope.from_envelope(envelope)
            if event.plugin_data.error is not None:
                raise ProtocolFailure(event.plugin_data.error)
            if not event.sdp:
                raise MissingArtifactError(f"Watch event for mountpoint {mountpoint_id} has no jsep.sdp")
            return event.sdp
        except ProtocolFailure as e:
            logger.error("Error watching mountpoint %s on janus streaming: %s", mountpoint_id, e)
        except asyncio.TimeoutError:
            logger.error("Timed out watching mountpoint %s after %ss", mountpoint_id, timeout)
        except SessionTerminatedError as e:
            logger.error("Gave up watching mountpoint %s: %s", mountpoint_id, e)
        return None

    async def start(self, jsep: dict[str, Any] | None = None) -> Envelope | None:
        """Start playout, usually with the viewer's SDP answer."""
        try:
            return expect_reply(await self.send({"request": "start"}, jsep=jsep), allow_ack=True)
        except ProtocolFailure as e:
            logger.error("Error starting janus streaming playout: %s", e)
            return None

    async def hangup(self) -> bool:
        """Stop playout on this handle."""
        try:
            expect_reply(await self.send({"request": "stop"}), allow_ack=True)
        except ProtocolFailure as e:
            logger.error("Error stopping janus streaming playout: %s", e)
            return False
        return True

    stop = hangup

    async def pause(self) -> bool:
        try:
            expect_reply(await self.send({"request": "pause"}), allow_ack=True)
        except ProtocolFailure as e:
            logger.error("Error pausing janus streaming playout: %s", e)
            return False
        return True

    async def list(self) -> list[dict[str, Any]] | None:
        """List the mountpoints available on the gateway."""
        try:
            reply = expect_reply(await self.send({"request": "list"}))
            mountpoints = _plugin_result(reply).get("list")
            if not isinstance(mountpoints, list):
                raise ProtocolFailure("list reply has no 'list' array")
            return mountpoints
        except ProtocolFailure as e:
            logger.error("Error listing janus streaming: %s", e)
            return None

    async def info(self, mountpoint_id: int | str) -> dict[str, Any] | None:
        try:
            reply = expect_reply(await self.send({"request": "info", "id": mountpoint_id}))
            details = _plugin_result(reply).get("info")
            if not isinstance(details, dict):
                raise ProtocolFailure("info reply has no 'info' object")
            return details
        except ProtocolFailure as e:
            logger.error("Error reading mountpoint %s info: %s", mountpoint_id, e)
            return None

    async def destroy(self, mountpoint_id: int | str) -> dict[str, Any] | None:
        """Destroy a mountpoint."""
        try:
            reply = expect_reply(await self.send({"request": "destroy", "id": mountpoint_id}))
            return _plugin_result(reply)
        except ProtocolFailure as e:
            logger.error("Error destroying janus streaming mountpoint %s: %s", mountpoint_id, e)
            return None


def _message(
    body: dict[str, Any], jsep: dict[str, Any] | None, transaction: str | None
) -> dict[str, Any]:
    message: dict[str, Any] = {"janus": "message", "body": body}
    if jsep is not None:
        message["jsep"] = jsep
    if transaction is not None:
        message["transaction"] = transaction
    return message


def _plugin_result(reply: Envelope) -> dict[str, Any]:
    if reply.plugindata is None:
        raise ProtocolFailure("Reply has no 'plugindata'")
    return reply.plugindata.data
