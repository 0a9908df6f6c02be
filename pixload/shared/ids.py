"""Correlation identifier generation."""

import uuid


def new_id(prefix: str = "id") -> str:
    """Return a fresh identifier such as ``id-3f2c...``.

    Backed by ``uuid4`` so ids stay unique across concurrent workers without
    any shared counter.
    """
    return f"{prefix}-{uuid.uuid4().hex}"


class IdGenerator:
    """Mints the three kinds of ids an iteration needs."""

    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix

    def idempotency_key(self) -> str:
        return new_id(self.prefix)

    def trace_id(self) -> str:
        return new_id(self.prefix)

    def event_id(self) -> str:
        return new_id(self.prefix)
