"""In-memory store of per-identity runtime state."""
import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Set

from ..models import AlertRuntimeState

logger = logging.getLogger(__name__)


class StateStore:
    """Runtime state keyed by alert identity, with one lock per identity.

    Transitions for an identity run under its lock so a pause or a second
    tick cannot interleave with a dispatch in progress.
    """

    def __init__(self):
        self._states: Dict[str, AlertRuntimeState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._states

    def __len__(self) -> int:
        return len(self._states)

    def keys(self) -> List[str]:
        return sorted(self._states)

    def get(self, key: str) -> AlertRuntimeState:
        """Current state, or a fresh default if the identity has none yet."""
        return self._states.get(key) or AlertRuntimeState()

    def set(self, key: str, state: AlertRuntimeState) -> None:
        self._states[key] = state

    def ensure(self, key: str) -> AlertRuntimeState:
        if key not in self._states:
            self._states[key] = AlertRuntimeState()
        return self._states[key]

    def lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def discard(self, key: str) -> None:
        self._states.pop(key, None)
        lock = self._locks.get(key)
        # a held lock stays so later waiters queue behind the running tick
        if lock is not None and not lock.locked():
            del self._locks[key]

    def retain(self, keep: Iterable[str]) -> List[str]:
        """Drop every identity not in ``keep``.

        Returns:
            The identities that were dropped
        """
        keep_set: Set[str] = set(keep)
        removed = [key for key in self._states if key not in keep_set]
        for key in removed:
            self.discard(key)
        for key in [key for key in self._locks if key not in keep_set]:
            self.discard(key)
        return removed

    async def pause(self, key: str, until: datetime) -> AlertRuntimeState:
        """Set an identity's pause deadline."""
        async with self.lock(key):
            state = replace(self.get(key), paused_until=until)
            self._states[key] = state
        logger.info(f"Paused {key} until {until.isoformat()}")
        return state
