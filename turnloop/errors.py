"""
Exceptions raised by the turn loop.

Anything raised from `Agent.turn()` is fatal to the turn in progress; the
history keeps every message appended before the failure.
"""
from __future__ import annotations


class TurnLoopError(Exception):
    """Base class for turn loop errors."""


class ModelProviderError(TurnLoopError):
    """The generation backend or its transport failed."""

    def __init__(self, message: str, provider: str = ""):
        self.provider = provider
        super().__init__(f"{provider}: {message}" if provider else message)


class ProtocolViolationError(TurnLoopError):
    """The backend event sequence broke the streaming protocol."""


class MaxRoundsExceededError(TurnLoopError):
    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(f"Max rounds ({max_rounds}) reached")


class TurnInProgressError(TurnLoopError):
    """The agent is already running a turn."""
