"""Wire types for the Janus HTTP transport.

Every response and long-poll event is a JSON object with a ``janus`` status
field and optional nested payloads::

    {"janus": "success", "transaction": "...", "data": {"id": 123}}
    {"janus": "event", "transaction": "...", "sender": 456,
     "plugindata": {"plugin": "janus.plugin.streaming", "data": {...}},
     "jsep": {"type": "offer", "sdp": "v=0..."}}
    {"janus": "error", "error": {"code": 458, "reason": "No such session"}}

The classes here turn those dicts into frozen dataclasses. Parsing is strict
about shape: a field that is present with the wrong type raises
``MalformedResponseError`` instead of leaking through as ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final

from janusstream.error import MalformedResponseError, ProtocolFailure

STATUS_SUCCESS: Final[str] = "success"
STATUS_ACK: Final[str] = "ack"
STATUS_ERROR: Final[str] = "error"
STATUS_EVENT: Final[str] = "event"
STATUS_KEEPALIVE: Final[str] = "keepalive"
STATUS_TIMEOUT: Final[str] = "timeout"

# Statuses on the poll channel that mean the session is unhealthy. "timeout"
# is sent when the gateway reaps an idle session.
POLL_FAILURE_STATUSES: Final[frozenset[str]] = frozenset({STATUS_ERROR, STATUS_TIMEOUT})


def is_id(x: object) -> bool:
    """Check if x can be a gateway-assigned id (int or str, never bool)."""
    if isinstance(x, bool):
        return False
    return isinstance(x, (int, str))


def _optional(obj: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    value = obj.get(key)
    if value is not None and not isinstance(value, kind):
        msg = f"Field '{key}' has type {type(value).__name__}"
        raise MalformedResponseError(msg)
    return value


@dataclass(frozen=True, slots=True)
class Jsep:
    """Session description attached to a message or event."""

    type: str | None
    sdp: str | None
    trickle: bool | None = None

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.type is not None:
            result["type"] = self.type
        if self.sdp is not None:
            result["sdp"] = self.sdp
        if self.trickle is not None:
            result["trickle"] = self.trickle
        return result

    @staticmethod
    def from_json(obj: Any) -> Jsep:
        if not isinstance(obj, dict):
            msg = f"jsep must be an object, got {type(obj).__name__}"
            raise MalformedResponseError(msg)
        return Jsep(
            type=_optional(obj, "type", str),
            sdp=_optional(obj, "sdp", str),
            trickle=_optional(obj, "trickle", bool),
        )


@dataclass(frozen=True, slots=True)
class PluginData:
    """The ``plugindata`` block: which plugin answered and its payload."""

    plugin: str | None
    data: dict[str, Any]

    @property
    def error_code(self) -> int | None:
        code = self.data.get("error_code")
        return code if isinstance(code, int) and not isinstance(code, bool) else None

    @property
    def error(self) -> str | None:
        """Plugin-level error text, if the plugin rejected the request."""
        if self.error_code is None and "error" not in self.data:
            return None
        return str(self.data.get("error", f"plugin error {self.error_code}"))

    @staticmethod
    def from_json(obj: Any) -> PluginData:
        if not isinstance(obj, dict):
            msg = f"plugindata must be an object, got {type(obj).__name__}"
            raise MalformedResponseError(msg)
        data = obj.get("data", {})
        if not isinstance(data, dict):
            msg = f"plugindata.data must be an object, got {type(data).__name__}"
            raise MalformedResponseError(msg)
        return PluginData(plugin=_optional(obj, "plugin", str), data=data)


@dataclass(frozen=True, slots=True)
class JanusErrorInfo:
    """The ``error`` block of a ``"janus": "error"`` envelope."""

    code: int | None
    reason: str

    @staticmethod
    def from_json(obj: Any) -> JanusErrorInfo:
        if not isinstance(obj, dict):
            msg = f"error must be an object, got {type(obj).__name__}"
            raise MalformedResponseError(msg)
        code = obj.get("code")
        if isinstance(code, bool) or not isinstance(code, (int, type(None))):
            msg = f"error.code must be int, got {type(code).__name__}"
            raise MalformedResponseError(msg)
        return JanusErrorInfo(code=code, reason=str(obj.get("reason", "")))

    def __str__(self) -> str:
        return f"{self.code}: {self.reason}" if self.code is not None else self.reason


@dataclass(frozen=True, slots=True)
class Envelope:
    """Outer structure of every response and event."""

    janus: str
    transaction: str | None = None
    session_id: int | str | None = None
    sender: int | str | None = None
    data: dict[str, Any] | None = None
    plugindata: PluginData | None = None
    jsep: Jsep | None = None
    error: JanusErrorInfo | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_success(self) -> bool:
        return self.janus == STATUS_SUCCESS

    @property
    def is_ack(self) -> bool:
        return self.janus == STATUS_ACK

    @property
    def is_failure(self) -> bool:
        """True if this envelope marks an unhealthy poll channel."""
        return self.janus in POLL_FAILURE_STATUSES

    def describe_failure(self) -> str:
        if self.error is not None:
            return f"janus={self.janus} ({self.error})"
        if self.plugindata is not None and self.plugindata.error is not None:
            return f"plugin error: {self.plugindata.error}"
        return f"janus={self.janus}"

    @staticmethod
    def from_json(obj: Any) -> Envelope:
        """Parse a decoded JSON response body."""
        if not isinstance(obj, dict):
            msg = f"Envelope must be an object, got {type(obj).__name__}"
            raise MalformedResponseError(msg)
        janus = obj.get("janus")
        if not isinstance(janus, str):
            raise MalformedResponseError("Envelope has no 'janus' status field")

        transaction = _optional(obj, "transaction", str)
        data = _optional(obj, "data", dict)
        for key in ("session_id", "sender"):
            if key in obj and obj[key] is not None and not is_id(obj[key]):
                msg = f"Field '{key}' is not an id"
                raise MalformedResponseError(msg)

        plugindata = PluginData.from_json(obj["plugindata"]) if obj.get("plugindata") is not None else None
        jsep = Jsep.from_json(obj["jsep"]) if obj.get("jsep") is not None else None
        error = JanusErrorInfo.from_json(obj["error"]) if obj.get("error") is not None else None

        return Envelope(
            janus=janus,
            transaction=transaction,
            session_id=obj.get("session_id"),
            sender=obj.get("sender"),
            data=data,
            plugindata=plugindata,
            jsep=jsep,
            error=error,
            raw=obj,
        )


def expect_reply(envelope: Envelope, *, allow_ack: bool = False) -> Envelope:
    """Check that a command reply reports success.

    Commands the gateway answers synchronously must return ``"success"``.
    Commands whose outcome arrives later on the poll channel are acknowledged
    with ``"ack"``, accepted when ``allow_ack`` is set. A plugin that embeds
    an error in an otherwise successful reply is a failure too.

    Raises:
        ProtocolFailure: If the reply does not report success.
    """
    accepted = envelope.is_success or (allow_ack and envelope.is_ack)
    if not accepted:
        raise ProtocolFailure(envelope.describe_failure())
    if envelope.plugindata is not None and envelope.plugindata.error is not None:
        raise ProtocolFailure(envelope.describe_failure())
    return envelope


@dataclass(frozen=True, slots=True)
class SessionCreateResult:
    """Result of ``{"janus": "create"}``."""

    id: int | str

    @staticmethod
    def from_envelope(envelope: Envelope) -> SessionCreateResult:
        return SessionCreateResult(_data_id(envelope, "session create"))


@dataclass(frozen=True, slots=True)
class AttachResult:
    """Result of ``{"janus": "attach"}``."""

    id: int | str

    @staticmethod
    def from_envelope(envelope: Envelope) -> AttachResult:
        return AttachResult(_data_id(envelope, "attach"))


def _data_id(envelope: Envelope, what: str) -> int | str:
    if envelope.data is None:
        msg = f"{what} response has no 'data'"
        raise MalformedResponseError(msg)
    value = envelope.data.get("id")
    if not is_id(value):
        msg = f"{what} response has no valid 'data.id'"
        raise MalformedResponseError(msg)
    return value


@dataclass(frozen=True, slots=True)
class EventEnvelope:
    """An asynchronous plugin event delivered on the poll channel."""

    transaction: str | None
    plugin_data: PluginData
    jsep: Jsep | None
    sender: int | str | None = None

    @property
    def sdp(self) -> str | None:
        return self.jsep.sdp if self.jsep is not None else None

    @staticmethod
    def from_envelope(envelope: Envelope) -> EventEnvelope:
        if envelope.plugindata is None:
            raise MalformedResponseError("Event has no 'plugindata'")
        return EventEnvelope(
            transaction=envelope.transaction,
            plugin_data=envelope.plugindata,
            jsep=envelope.jsep,
            sender=envelope.sender,
        )
