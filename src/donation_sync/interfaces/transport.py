"""Connection protocol - the duplex message channel under an EventChannel."""

from __future__ import annotations

from typing import Any, Protocol


class Connection(Protocol):
    """Ordered, reliable message delivery to one remote subscriber.

    Framing and compression belong to the implementation.
    """

    @property
    def closed(self) -> bool:
        ...

    async def send(self, message: dict[str, Any]) -> None:
        """Deliver one message. Returns once the transport accepted it."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...
