"""Shared runtime: the published definition snapshot and the state store."""
import logging
from typing import List, Optional, Set, Tuple

from .. import metrics
from .events import definition_error_key, is_internal_key, source_error_key
from .loader import DefinitionSnapshot
from .state_store import StateStore

logger = logging.getLogger(__name__)


class Runtime:
    """Holds the active snapshot and runtime state.

    The snapshot is replaced as a whole by ``publish``; readers take a
    reference once (``runtime.snapshot``) and keep using it, so a tick that
    started against an old snapshot finishes against that snapshot.
    """

    def __init__(self, snapshot: Optional[DefinitionSnapshot] = None, store: Optional[StateStore] = None):
        self._snapshot = snapshot or DefinitionSnapshot()
        self.store = store or StateStore()
        self._reconcile(self._snapshot)

    @property
    def snapshot(self) -> DefinitionSnapshot:
        return self._snapshot

    def publish(self, snapshot: DefinitionSnapshot) -> Tuple[List[str], List[str]]:
        """Swap in a new snapshot and reconcile runtime state with it.

        State is kept for identities present in both snapshots, created
        fresh for new ones and dropped for identities that are gone.

        Returns:
            (added alert paths, removed alert paths)
        """
        previous = self._snapshot
        added = sorted(set(snapshot.alerts) - set(previous.alerts))
        removed = sorted(set(previous.alerts) - set(snapshot.alerts))

        self._snapshot = snapshot
        dropped = self._reconcile(snapshot)
        metrics.alerts_loaded.set(len(snapshot.alerts))

        logger.info(
            f"Published snapshot: {len(snapshot.alerts)} alerts "
            f"({len(added)} added, {len(removed)} removed, {len(dropped)} states dropped)"
        )
        return added, removed

    def _reconcile(self, snapshot: DefinitionSnapshot) -> List[str]:
        keep: Set[str] = set()
        for path in snapshot.alerts:
            keep.add(path)
            keep.add(source_error_key(path))
            self.store.ensure(path)
        for path in snapshot.error_paths():
            keep.add(definition_error_key(path))
        keep.update(key for key in self.store.keys() if is_internal_key(key))
        return self.store.retain(keep)
