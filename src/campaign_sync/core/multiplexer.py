from __future__ import annotations

import logging
from typing import Callable

from .config import SyncConfig
from .normalize import join_path
from .ports import DocumentStorePort, SchedulerPort, Unsubscribe
from .state import COLLECTIONS, CampaignView, genesis_payload
from .types import DocumentSnapshot, SessionParams, SyncEvent

TerminalCallback = Callable[[str], None]
ReadyCallback = Callable[[dict], None]
WriteErrorCallback = Callable[[str, Exception], object]


class SnapshotMultiplexer:
    """Merge the root document and its sub-collection streams into one view."""

    def __init__(
        self,
        store: DocumentStorePort,
        view: CampaignView,
        scheduler: SchedulerPort,
        *,
        on_terminal: TerminalCallback,
        on_ready: ReadyCallback | None = None,
        on_write_error: WriteErrorCallback | None = None,
        config: SyncConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self._store = store
        self._view = view
        self._scheduler = scheduler
        self._on_terminal = on_terminal
        self._on_ready = on_ready
        self._on_write_error = on_write_error
        self._config = config or SyncConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._params: SessionParams | None = None
        self._unsubscribers: list[Unsubscribe] = []
        self._open = False
        self._ready = False
        self._genesis_requested = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, params: SessionParams) -> None:
        if self._open:
            self.close()
        self._params = params
        self._open = True
        self._ready = False
        self._genesis_requested = False

        root = join_path(self._config.root_collection, params.code)
        # Root first so a ban or missing session is seen before any sub-collection data.
        self._subscribe(lambda: self._store.subscribe_document(root, self._on_root))
        self._subscribe(
            lambda: self._store.subscribe_collection(
                join_path(root, COLLECTIONS["players"]), self._collection_handler("players")
            )
        )
        self._subscribe(
            lambda: self._store.subscribe_collection(
                join_path(root, COLLECTIONS["journal"]), self._collection_handler("journal")
            )
        )
        self._subscribe(
            lambda: self._store.subscribe_collection(
                join_path(root, COLLECTIONS["chat"]),
                self._collection_handler("chat"),
                order_by="timestamp",
                limit_to_last=self._config.chat_history_limit,
            )
        )
        self._subscribe(
            lambda: self._store.subscribe_collection(
                join_path(root, COLLECTIONS["lore"]), self._collection_handler("lore")
            )
        )

    def close(self) -> None:
        self._open = False
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            try:
                unsubscribe()
            except Exception:
                self._logger.exception("Unsubscribe failed")

    def _subscribe(self, factory: Callable[[], Unsubscribe]) -> None:
        # Subscribing can deliver a terminal root snapshot synchronously.
        if not self._open:
            return
        unsubscribe = factory()
        if self._open:
            self._unsubscribers.append(unsubscribe)
        else:
            unsubscribe()

    def _on_root(self, snapshot: DocumentSnapshot) -> None:
        if not self._open or self._params is None:
            return
        params = self._params

        if snapshot.exists:
            data = snapshot.data or {}
            if params.user_id in (data.get("bannedUsers") or []):
                self._logger.info("Identity %s is banned from %s", params.user_id, params.code)
                self.close()
                self._on_terminal("banished")
                return
            self._view.apply(SyncEvent("root", data))
            if not self._ready:
                self._ready = True
                if self._on_ready is not None:
                    self._on_ready(data)
            return

        if params.is_host:
            if self._genesis_requested:
                return
            self._genesis_requested = True
            self._logger.info("Creating campaign %s for host %s", params.code, params.user_id)
            payload = genesis_payload(params.user_id, grid_size=self._config.default_grid_size)
            path = snapshot.path
            self._scheduler.spawn(lambda: self._create_root(path, payload))
            return

        self._logger.info("Campaign %s does not exist", params.code)
        self.close()
        self._on_terminal("not_found")

    def _collection_handler(self, kind: str) -> Callable[[list[DocumentSnapshot]], None]:
        def _handler(snapshots: list[DocumentSnapshot]) -> None:
            if not self._open:
                return
            self._view.apply(SyncEvent(kind, list(snapshots)))

        return _handler

    async def _create_root(self, path: str, payload: dict) -> None:
        try:
            await self._store.set_document(path, payload)
        except Exception as exc:
            # Allow the next missing-root snapshot (or a rejoin) to try again.
            self._genesis_requested = False
            self._logger.warning("Creating campaign at %s failed: %s", path, exc)
            if self._on_write_error is not None:
                self._on_write_error(path, exc)
