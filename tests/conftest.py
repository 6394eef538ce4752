"""Pytest configuration for all tests."""

import asyncio
import copy
import uuid
from typing import Any, Callable

import pytest
import pytest_asyncio

from janusstream import JanusConfig, JanusSession, PollPolicy
from janusstream.error import TransportError

Reply = dict[str, Any] | BaseException
ReplyFunc = Callable[[str, dict[str, Any]], Reply]


class FakeJanus:
    """In-memory gateway implementing the JanusTransport protocol.

    POST replies are produced per command (``create``, ``attach``, ``destroy``,
    or ``message:<request>`` for plugin messages). GET returns items pushed with
    ``push_event`` / ``push_failure`` and blocks like a long-poll when none
    are queued.
    """

    def __init__(self) -> None:
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self.gets: list[str] = []
        self.events: asyncio.Queue[Reply] = asyncio.Queue()
        self.fail_polls = False
        self.closed = False
        self._session_ids = iter(str(n) for n in range(123, 1000))
        self._handle_ids = iter(str(n) for n in range(456, 1000))
        self.replies: dict[str, ReplyFunc] = {
            "create": self._create_session,
            "attach": self._attach,
            "destroy": self._success,
            "detach": self._success,
            "trickle": self._ack,
        }

    def on(self, command: str, reply: ReplyFunc) -> None:
        self.replies[command] = reply

    def push_event(self, event: dict[str, Any]) -> None:
        self.events.put_nowait(event)

    def push_failure(self, message: str = "connection refused") -> None:
        self.events.put_nowait(TransportError(message))

    def commands(self) -> list[str]:
        """Command names of every POST, in order."""
        return [command_name(body) for _, body in self.posts]

    async def post(
        self, host: str, path: str, body: dict[str, Any], secret: str
    ) -> dict[str, Any]:
        if not body.get("transaction"):
            body["transaction"] = str(uuid.uuid4())
        body["apisecret"] = secret
        self.posts.append((path, copy.deepcopy(body)))

        reply = self.replies.get(command_name(body), self._ack)(path, body)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def get(self, host: str, path: str, secret: str) -> dict[str, Any]:
        self.gets.append(path)
        if self.fail_polls:
            await asyncio.sleep(0)
            raise TransportError("gateway unreachable")
        item = await self.events.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def _create_session(self, path: str, body: dict[str, Any]) -> Reply:
        return {"janus": "success", "transaction": body["transaction"],
                "data": {"id": next(self._session_ids)}}

    def _attach(self, path: str, body: dict[str, Any]) -> Reply:
        return {"janus": "success", "transaction": body["transaction"],
                "data": {"id": next(self._handle_ids)}}

    def _success(self, path: str, body: dict[str, Any]) -> Reply:
        return {"janus": "success", "transaction": body["transaction"]}

    def _ack(self, path: str, body: dict[str, Any]) -> Reply:
        return {"janus": "ack", "transaction": body["transaction"]}


def command_name(body: dict[str, Any]) -> str:
    """Key a POST by its ``janus`` command, or ``message:<request>`` for
    plugin messages, so session and mountpoint commands stay distinct."""
    if body.get("janus") == "message":
        return f"message:{body['body']['request']}"
    return body["janus"]


def plugin_reply(body: dict[str, Any], data: dict[str, Any], status: str = "success") -> dict[str, Any]:
    """A synchronous streaming-plugin reply to ``body``."""
    return {
        "janus": status,
        "transaction": body["transaction"],
        "plugindata": {"plugin": "janus.plugin.streaming", "data": data},
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    async def _wait() -> None:
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_wait(), timeout=timeout)


@pytest.fixture
def config() -> JanusConfig:
    return JanusConfig(host="janus.test:8088", secret="s3cret", poll=PollPolicy(backoff=0.0))


@pytest.fixture
def fake() -> FakeJanus:
    return FakeJanus()


@pytest_asyncio.fixture
async def session(config: JanusConfig, fake: FakeJanus):
    janus = JanusSession(config, transport=fake)
    yield janus
    await janus.close()
