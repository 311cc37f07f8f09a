from __future__ import annotations
from typing import Any, Callable, Dict, Optional

from portal.services.store import SERVER_TIMESTAMP, DocumentStore, server_now

Snapshot = Dict[str, Any]


class OptimisticDocument:
    """Local copy of one document: a confirmed snapshot plus a pending patch.

    ``apply_local`` layers a patch over the confirmed state before the write
    is acknowledged; ``rollback`` restores the pre-patch view if the write
    fails; any snapshot arriving from the store replaces the pending patch
    (last writer wins at the store).
    """

    def __init__(self, confirmed: Optional[Snapshot] = None):
        self.confirmed = confirmed
        self.pending: Optional[Snapshot] = None
        self.version = 0
        self._previous: Optional[Snapshot] = None

    @property
    def current(self) -> Optional[Snapshot]:
        if self.pending is None:
            return self.confirmed
        return {**(self.confirmed or {}), **self.pending}

    @property
    def has_pending(self) -> bool:
        return self.pending is not None

    def apply_local(self, patch: Snapshot) -> None:
        self._previous = self.pending
        # the store resolves server timestamps at commit; show local time meanwhile
        local = {k: (server_now() if v is SERVER_TIMESTAMP else v) for k, v in patch.items()}
        self.pending = {**(self.pending or {}), **local}

    def rollback(self) -> None:
        self.pending = self._previous
        self._previous = None

    def on_snapshot(self, snapshot: Optional[Snapshot]) -> None:
        self.confirmed = snapshot
        self.pending = None
        self._previous = None
        self.version += 1

    def bind(self, store: DocumentStore, path: str) -> Callable[[], None]:
        return store.subscribe(path, self.on_snapshot)
