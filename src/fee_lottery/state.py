from __future__ import annotations

import itertools
from dataclasses import dataclass

from .errors import RoundInProgress

_round_ids = itertools.count(1)


@dataclass(frozen=True)
class RoundToken:
    """Proof that the holder started the current round. Only it can finish it."""

    round_id: int


class RoundState:
    """
    Process-wide pot and run flag. Mirrored to storage, never loaded from it.
    is_running is True exactly while a RoundToken is outstanding.
    """

    def __init__(self) -> None:
        self.pot_size_lamports = 0
        self._token: RoundToken | None = None

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def begin(self) -> RoundToken:
        if self._token is not None:
            raise RoundInProgress(f"Round {self._token.round_id} is still running.")
        self._token = RoundToken(next(_round_ids))
        return self._token

    def holds(self, token: RoundToken) -> bool:
        return self._token is token

    def finish(self, token: RoundToken) -> bool:
        """Clears the run flag and the pot. False if token is stale (already finished)."""
        if self._token is not token:
            return False
        self._token = None
        self.pot_size_lamports = 0
        return True

    def __repr__(self) -> str:
        return f"RoundState(is_running={self.is_running}, pot_size_lamports={self.pot_size_lamports})"
