"""Transaction id generation."""

from __future__ import annotations

import uuid
from typing import Callable

TransactionIdSource = Callable[[], str]


def new_transaction_id() -> str:
    """Return a fresh random transaction id (UUID4 text form)."""
    return str(uuid.uuid4())
