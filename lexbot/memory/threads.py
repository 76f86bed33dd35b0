from __future__ import annotations

from threading import RLock
from typing import Dict, List, Protocol

from lexbot.models import MediaReference, ThreadMessage


class ThreadStore(Protocol):
    def history(self, thread_id: str) -> List[ThreadMessage]: ...

    def append(self, thread_id: str, message: ThreadMessage) -> None: ...


class InMemoryThreadStore:
    """Append-only per-thread message log."""

    def __init__(self) -> None:
        self._threads: Dict[str, List[ThreadMessage]] = {}
        self._lock = RLock()

    def history(self, thread_id: str) -> List[ThreadMessage]:
        with self._lock:
            return list(self._threads.get(thread_id, []))

    def append(self, thread_id: str, message: ThreadMessage) -> None:
        with self._lock:
            self._threads.setdefault(thread_id, []).append(message)


def user_turn(text: str, images: List[MediaReference]) -> ThreadMessage:
    return ThreadMessage(role="user", text=text, image_refs=list(images))


def assistant_turn(text: str) -> ThreadMessage:
    return ThreadMessage(role="assistant", text=text)
