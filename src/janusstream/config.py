"""Pydantic configuration models for janusstream.

Only ``host`` and ``secret`` are required. The other fields default to plain
HTTP, a 2 second backoff between failed polls, reinitialisation after 2
consecutive failures and a hard stop after 3 reinitialisations.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PollPolicy(BaseModel):
    """Failure policy for the long-poll loop.

    Attributes:
        backoff: Seconds to wait after a failed poll before retrying.
        failure_threshold: Consecutive failures that trigger escalation.
        max_reinits: Reinitialisations allowed before the session is
            terminated.
    """

    model_config = ConfigDict(frozen=True)

    backoff: float = Field(default=2.0, ge=0, description="Seconds between failed polls")
    failure_threshold: int = Field(default=2, ge=1, description="Failures before escalation")
    max_reinits: int = Field(default=3, ge=0, description="Reinits before termination")


class JanusConfig(BaseModel):
    """Connection configuration for a Janus session.

    Attributes:
        host: Gateway address as ``host[:port]``, without scheme or path.
        secret: Value sent as ``apisecret`` on every request.
        scheme: ``http`` or ``https``.
        request_timeout: Total timeout for control (POST) requests.
        poll_timeout: Total timeout for long-poll (GET) requests. Must exceed
            the gateway's own long-poll hold time (30s by default).
        poll: Failure policy for the poll loop.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="Gateway host[:port]")
    secret: str = Field(..., description="Janus API secret")
    scheme: Literal["http", "https"] = "http"
    request_timeout: float = Field(default=30.0, gt=0, description="POST timeout in seconds")
    poll_timeout: float = Field(default=65.0, gt=0, description="Long-poll timeout in seconds")
    poll: PollPolicy = Field(default_factory=PollPolicy)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject empty hosts and hosts that already carry a scheme."""
        if not v:
            raise ValueError("Host cannot be empty")
        if "://" in v:
            raise ValueError("Host must not include a scheme; use the scheme field")
        return v.rstrip("/")
