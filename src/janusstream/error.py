"""Error types for the Janus HTTP client.

Ordinary remote-side failures are reported to callers as falsy return values,
not exceptions. The classes below are what the client raises internally and
what escapes to callers only for transport failures and precondition
violations.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Category of a client error."""

    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    MALFORMED = "malformed"
    MISSING_ARTIFACT = "missing_artifact"
    DUPLICATE_TRANSACTION = "duplicate_transaction"
    NO_SESSION = "no_session"
    TERMINATED = "terminated"


class JanusClientError(Exception):
    """Base class for every error raised by janusstream."""

    code: ErrorCode = ErrorCode.PROTOCOL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value}: {self.message!r})"


class TransportError(JanusClientError):
    """Network or decoding failure talking to the gateway.

    The underlying exception is kept on ``cause`` and is also chained as
    ``__cause__`` by the raiser.
    """

    code = ErrorCode.TRANSPORT

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ProtocolFailure(JanusClientError):
    """The gateway answered, but the envelope reports a failure or lacks
    the payload the command needs."""

    code = ErrorCode.PROTOCOL


class MalformedResponseError(ProtocolFailure):
    """Envelope does not have the expected shape."""

    code = ErrorCode.MALFORMED


class MissingArtifactError(ProtocolFailure):
    """A watch event arrived without an SDP offer."""

    code = ErrorCode.MISSING_ARTIFACT


class DuplicateTransactionError(JanusClientError):
    code = ErrorCode.DUPLICATE_TRANSACTION

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction already registered: {transaction_id}")
        self.transaction_id = transaction_id


class SessionNotCreatedError(JanusClientError):
    """A handle-scoped request was issued before the session existed."""

    code = ErrorCode.NO_SESSION


class SessionTerminatedError(JanusClientError):
    """The poll loop exhausted its retry and reinit budget."""

    code = ErrorCode.TERMINATED
