from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Sequence

from .config import SyncConfig
from .errors import PersistenceError, SessionStateError
from .normalize import dump_json, join_path, sanitize
from .ports import DocumentStorePort, LocalStorePort, SchedulerPort
from .scheduling import DebounceSlot
from .state import CampaignView, split_root_fields
from .types import ProposeResult, SessionParams, SyncEvent, WriteOp


class WriteCoordinator:
    """Optimistic write path: apply locally now, persist the root document later.

    Within one debounce window only the latest proposal is written. A
    failed write is reported, never retried, and never rolls the view back.
    """

    def __init__(
        self,
        view: CampaignView,
        store: DocumentStorePort | None,
        local_store: LocalStorePort | None,
        scheduler: SchedulerPort,
        *,
        config: SyncConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self._view = view
        self._store = store
        self._local_store = local_store
        self._config = config or SyncConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._slot = DebounceSlot(scheduler, self._config.debounce_seconds, logger=self._logger)
        self._params: SessionParams | None = None
        self.last_persistence_error: PersistenceError | None = None

    def bind(self, params: SessionParams | None) -> None:
        self._params = params

    @property
    def has_pending_write(self) -> bool:
        return self._slot.pending

    @property
    def root_path(self) -> str:
        return join_path(self._config.root_collection, self._require_params().code)

    async def propose(self, next_state: dict[str, Any], immediate: bool = False) -> ProposeResult:
        params = self._require_params()
        sanitized = sanitize(next_state)
        if not isinstance(sanitized, dict):
            raise SessionStateError("proposed state must be a mapping")

        self._view.apply(SyncEvent("local", sanitized))

        if params.offline:
            self.store_offline()
            return ProposeResult(status="stored_offline")

        root_fields = split_root_fields(sanitized)
        path = self.root_path
        if immediate:
            self._slot.cancel()
            return await self._persist(path, root_fields)

        async def _deferred() -> None:
            await self._persist(path, root_fields)

        self._slot.schedule(_deferred)
        return ProposeResult(status="scheduled")

    def apply_local(self, patch: dict[str, Any]) -> None:
        """Optimistically replace top-level view keys without a root write."""
        self._view.apply(SyncEvent("local", patch))
        if self._require_params().offline:
            self.store_offline()

    def store_offline(self) -> None:
        if self._local_store is None:
            raise SessionStateError("no local store configured")
        self._local_store.set_item(self._config.local_state_key, dump_json(self._view.data))

    async def flush(self) -> None:
        await self._slot.flush()

    def cancel_pending(self) -> None:
        self._slot.cancel()

    async def write_entity(self, path: str, data: dict[str, Any], *, merge: bool = True) -> ProposeResult:
        return await self._attempt(path, lambda store: store.set_document(path, data, merge=merge))

    async def delete_entity(self, path: str) -> ProposeResult:
        return await self._attempt(path, lambda store: store.delete_document(path))

    async def add_entity(self, collection_path: str, data: dict[str, Any]) -> ProposeResult:
        return await self._attempt(collection_path, lambda store: store.add_document(collection_path, data))

    async def update_fields(self, path: str, fields: dict[str, Any]) -> ProposeResult:
        return await self._attempt(path, lambda store: store.update_document(path, fields))

    async def commit_batch(self, writes: Sequence[WriteOp]) -> ProposeResult:
        return await self._attempt("batch", lambda store: store.commit_batch(writes))

    async def _persist(self, path: str, root_fields: dict[str, Any]) -> ProposeResult:
        return await self._attempt(path, lambda store: store.set_document(path, root_fields, merge=True))

    async def _attempt(
        self,
        label: str,
        call: Callable[[DocumentStorePort], Awaitable[Any]],
    ) -> ProposeResult:
        if self._store is None:
            raise SessionStateError("no document store configured")
        try:
            await call(self._store)
        except Exception as exc:
            self.record_failure(label, exc)
            return ProposeResult(status="error", reason=str(exc))
        self.last_persistence_error = None
        return ProposeResult(status="persisted")

    def record_failure(self, label: str, exc: Exception) -> PersistenceError:
        error = exc if isinstance(exc, PersistenceError) else PersistenceError(str(exc))
        self.last_persistence_error = error
        self._logger.warning("Write to %s failed: %s", label, exc)
        return error

    def _require_params(self) -> SessionParams:
        if self._params is None:
            raise SessionStateError("no active session")
        return self._params
