"""
In-memory conversation history.

Append is the only mutation. Readers get copies, so a snapshot taken on any
thread stays valid while the agent appends the next message.
"""
from __future__ import annotations

import threading
from typing import Iterable, Optional

from turnloop.messages import Message


class ConversationHistory:
    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._lock = threading.Lock()
        self._messages: list[Message] = list(messages or [])

    def snapshot(self) -> list[Message]:
        with self._lock:
            return list(self._messages)

    def append(self, message: Message) -> None:
        with self._lock:
            self._messages.append(message)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
