"""SessionDirectory protocol - session existence checks."""

from __future__ import annotations

from typing import Protocol


class SessionDirectory(Protocol):
    """Answers whether a session id is known and still open."""

    async def exists(self, session_id: str) -> bool:
        ...


class OpenSessionDirectory:
    """Accepts every session id except those explicitly closed."""

    def __init__(self) -> None:
        self._closed: set[str] = set()

    async def exists(self, session_id: str) -> bool:
        return bool(session_id) and session_id not in self._closed

    def close(self, session_id: str) -> None:
        self._closed.add(session_id)
