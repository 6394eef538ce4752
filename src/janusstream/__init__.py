"""janusstream - asyncio client for the Janus gateway HTTP transport.

Drives Janus sessions and streaming-plugin handles over the REST API: commands
go out as POST requests, asynchronous answers come back on a long-poll GET
channel and are matched to their callers by transaction id.
"""

from janusstream.config import JanusConfig, PollPolicy
from janusstream.error import (
    DuplicateTransactionError,
    ErrorCode,
    JanusClientError,
    MalformedResponseError,
    MissingArtifactError,
    ProtocolFailure,
    SessionNotCreatedError,
    SessionTerminatedError,
    TransportError,
)
from janusstream.handle import Handle, StreamingHandle
from janusstream.ids import TransactionIdSource, new_transaction_id
from janusstream.registry import TransactionRegistry
from janusstream.session import STREAMING_PLUGIN, JanusSession, SessionState, WatchResult
from janusstream.transport import HttpTransport, JanusTransport
from janusstream.wire import (
    AttachResult,
    Envelope,
    EventEnvelope,
    JanusErrorInfo,
    Jsep,
    PluginData,
    SessionCreateResult,
)

__version__ = "0.1.0"

__all__ = [
    # Session and handles
    "JanusSession",
    "SessionState",
    "WatchResult",
    "Handle",
    "StreamingHandle",
    "STREAMING_PLUGIN",
    # Correlation
    "TransactionRegistry",
    "TransactionIdSource",
    "new_transaction_id",
    # Transport
    "JanusTransport",
    "HttpTransport",
    # Configuration (Pydantic models)
    "JanusConfig",
    "PollPolicy",
    # Wire types
    "Envelope",
    "EventEnvelope",
    "SessionCreateResult",
    "AttachResult",
    "PluginData",
    "Jsep",
    "JanusErrorInfo",
    # Errors
    "ErrorCode",
    "JanusClientError",
    "TransportError",
    "ProtocolFailure",
    "MalformedResponseError",
    "MissingArtifactError",
    "DuplicateTransactionError",
    "SessionNotCreatedError",
    "SessionTerminatedError",
]
