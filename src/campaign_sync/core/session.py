from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from .chat import CHAT_KINDS, EPHEMERAL_KINDS, build_chat_entry, visible_chat, visible_journal_pages
from .config import SyncConfig
from .coordinator import WriteCoordinator
from .errors import (
    AuthorizationError,
    BanishedError,
    PersistenceError,
    SanitizationError,
    SessionNotFoundError,
    SessionStateError,
)
from .lore import build_assistant_messages, chunks_from_pages, pack_lore, retrieve_context
from .maps import IMMEDIATE_ACTIONS, reduce_map
from .membership import (
    add_campaign_member,
    ban_member,
    is_elevated,
    join_member,
    kick_member,
    set_elevated,
    unban_member,
)
from .multiplexer import SnapshotMultiplexer
from .normalize import join_path, normalize_session_code, parse_json_dict, sanitize
from .ports import (
    BlobUploadPort,
    DocumentIngestionPort,
    DocumentStorePort,
    IdentityPort,
    LocalStorePort,
    SchedulerPort,
    TextCompletionPort,
)
from .scheduling import AsyncioScheduler
from .state import COLLECTIONS, CampaignView, initial_view
from .types import ArrayUnion, Identity, ModerationResult, ProposeResult, SessionParams, SyncEvent, WriteOp

TerminalListener = Callable[[str], None]


class CampaignSession:
    """One client's handle on a shared campaign.

    Owns the merged view; every mutation goes through the write
    coordinator, every inbound change through the multiplexer.
    ``status`` moves ``idle -> connecting -> live`` and ends in ``left``,
    ``not_found`` or ``banished``.
    """

    def __init__(
        self,
        store: DocumentStorePort | None = None,
        local_store: LocalStorePort | None = None,
        *,
        scheduler: SchedulerPort | None = None,
        config: SyncConfig | None = None,
        identity_provider: IdentityPort | None = None,
        blob_upload: BlobUploadPort | None = None,
        completion: TextCompletionPort | None = None,
        ingestion: DocumentIngestionPort | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ):
        self._config = config or SyncConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._store = store
        self._local_store = local_store
        self._scheduler = scheduler or AsyncioScheduler(self._logger)
        self._identity_provider = identity_provider
        self._blob_upload = blob_upload
        self._completion = completion
        self._ingestion = ingestion
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()

        self._view = CampaignView(initial_view(grid_size=self._config.default_grid_size), logger=self._logger)
        self._coordinator = WriteCoordinator(
            self._view,
            store,
            local_store,
            self._scheduler,
            config=self._config,
            logger=self._logger,
        )
        self._multiplexer: SnapshotMultiplexer | None = None
        if store is not None:
            self._multiplexer = SnapshotMultiplexer(
                store,
                self._view,
                self._scheduler,
                on_terminal=self._handle_terminal,
                on_ready=self._handle_ready,
                on_write_error=self._coordinator.record_failure,
                config=self._config,
                logger=self._logger,
            )
        self._params: SessionParams | None = None
        self._identity: Identity | None = None
        self._terminal_listeners: list[TerminalListener] = []
        self.status = "idle"

    # -- read side ---------------------------------------------------------

    @property
    def state(self) -> dict[str, Any]:
        return self._view.data

    @property
    def params(self) -> SessionParams | None:
        return self._params

    @property
    def last_persistence_error(self) -> PersistenceError | None:
        return self._coordinator.last_persistence_error

    @property
    def has_pending_write(self) -> bool:
        return self._coordinator.has_pending_write

    def is_elevated(self, user_id: str | None = None) -> bool:
        uid = user_id if user_id is not None else (self._params.user_id if self._params else None)
        return is_elevated(self._view.data, uid)

    def visible_chat(self) -> list[dict[str, Any]]:
        return visible_chat(self._view.data, self._params.user_id if self._params else None)

    def visible_journal_pages(self) -> list[dict[str, Any]]:
        return visible_journal_pages(self._view.data, self._params.user_id if self._params else None)

    def subscribe(self, listener: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        return self._view.subscribe(listener)

    def on_terminal(self, listener: TerminalListener) -> Callable[[], None]:
        self._terminal_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._terminal_listeners:
                self._terminal_listeners.remove(listener)

        return _unsubscribe

    async def drain(self) -> None:
        await self._scheduler.drain()

    # -- lifecycle ---------------------------------------------------------

    async def join(
        self,
        session_code: str,
        role: str,
        identity: Identity | None = None,
        *,
        offline: bool = False,
    ) -> SessionParams:
        if identity is None and self._identity_provider is not None:
            identity = self._identity_provider.current_identity()
        if identity is None:
            raise SessionStateError("join requires an identity")
        if "." in identity.user_id:
            # Presence is written through a dotted field path keyed by user id.
            raise ValueError(f"user id must not contain '.': {identity.user_id!r}")
        code = normalize_session_code(session_code) or ("LOCAL" if offline else "")
        if not code:
            raise SessionStateError("join requires a session code")
        if self._params is not None:
            await self.leave()

        params = SessionParams(code=code, role=role, user_id=identity.user_id, offline=offline)
        self._params = params
        self._identity = identity
        self._coordinator.bind(params)

        if offline:
            self._join_offline(params, identity)
            return params

        if self._multiplexer is None:
            raise SessionStateError("online join requires a document store")
        self.status = "connecting"
        self._view.reset(initial_view(grid_size=self._config.default_grid_size))
        self._logger.info("Joining campaign %s as %s (%s)", code, identity.user_id, role)
        self._multiplexer.open(params)
        return params

    async def leave(self) -> None:
        if self._params is None:
            return
        params = self._params
        if not params.offline:
            await self._coordinator.flush()
            if self._multiplexer is not None:
                self._multiplexer.close()
        self._logger.info("Left campaign %s", params.code)
        self._end("left")

    def _join_offline(self, params: SessionParams, identity: Identity) -> None:
        if self._local_store is None:
            raise SessionStateError("offline join requires a local store")
        stored = parse_json_dict(self._local_store.get_item(self._config.local_state_key))
        data = initial_view(params.user_id, grid_size=self._config.default_grid_size)
        data.update(stored)
        if params.user_id not in (data.get("bannedUsers") or []):
            data = join_member(data, params.user_id, identity.display_name)
        self._view.reset(data)
        self.status = "live"
        self._coordinator.store_offline()
        self._view.apply(SyncEvent("local", {}))

    def _handle_ready(self, root_data: dict[str, Any]) -> None:
        self.status = "live"
        self._scheduler.spawn(lambda: self._announce_presence(root_data))

    async def _announce_presence(self, root_data: dict[str, Any]) -> None:
        params, identity = self._params, self._identity
        if params is None or identity is None:
            return
        fields: dict[str, Any] = {f"activeUsers.{params.user_id}": identity.display_name}
        record = add_campaign_member(
            root_data.get("campaignMembers"),
            params.user_id,
            identity.display_name,
            params.role,
            self._now_ms(),
        )
        if record is not None:
            fields["campaignMembers"] = ArrayUnion((record,))
        await self._coordinator.update_fields(self._coordinator.root_path, fields)

    def _handle_terminal(self, reason: str) -> None:
        self._coordinator.cancel_pending()
        self._end(reason)
        for listener in list(self._terminal_listeners):
            try:
                listener(reason)
            except Exception:
                self._logger.exception("Terminal listener failed")

    def _end(self, status: str) -> None:
        self._coordinator.bind(None)
        self._params = None
        self._identity = None
        self._view.reset(initial_view(grid_size=self._config.default_grid_size))
        self.status = status

    # -- optimistic writes -------------------------------------------------

    async def propose(self, next_state: dict[str, Any], immediate: bool = False) -> ProposeResult:
        self._require_session()
        return await self._coordinator.propose(next_state, immediate)

    async def dispatch_map_action(self, action: str, payload: Any = None) -> ProposeResult:
        self._require_session()
        state = self._view.data
        campaign = dict(state.get("campaign") or {})
        active_map, saved_maps = reduce_map(
            campaign.get("activeMap"),
            campaign.get("savedMaps"),
            action,
            payload,
            now_ms=self._now_ms(),
            grid_size=self._config.default_grid_size,
        )
        campaign["activeMap"] = active_map
        campaign["savedMaps"] = saved_maps
        return await self.propose({**state, "campaign": campaign}, immediate=action in IMMEDIATE_ACTIONS)

    async def upload_map_image(self, data: bytes, path: str) -> str:
        if self._blob_upload is None:
            raise SessionStateError("no blob upload provider configured")
        url = await self._blob_upload.upload(data, path)
        await self.dispatch_map_action("set_image", url)
        return url

    async def clear_heavy_fields(self) -> ModerationResult:
        params = self._require_session()
        state = self._view.data
        if not is_elevated(state, params.user_id):
            return ModerationResult(status="rejected", reason="not_elevated")
        campaign = dict(state.get("campaign") or {})
        active_map = dict(campaign.get("activeMap") or {})
        active_map["revealPaths"] = []
        campaign["activeMap"] = active_map
        campaign["savedMaps"] = []
        return self._as_moderation(await self.propose({**state, "campaign": campaign}, immediate=True))

    async def update_combat(self, combat: dict[str, Any]) -> ModerationResult:
        params = self._require_session()
        state = self._view.data
        if not is_elevated(state, params.user_id):
            return ModerationResult(status="rejected", reason="not_elevated")
        campaign = {**(state.get("campaign") or {}), "combat": combat}
        return self._as_moderation(await self.propose({**state, "campaign": campaign}, immediate=True))

    async def assign_roster_entry(self, user_id: str, entry_id: str | None) -> ModerationResult:
        params = self._require_session()
        state = self._view.data
        if not is_elevated(state, params.user_id):
            return ModerationResult(status="rejected", reason="not_elevated")
        assignments = dict(state.get("assignments") or {})
        if entry_id is None:
            assignments.pop(user_id, None)
        else:
            assignments[user_id] = entry_id
        return self._as_moderation(await self.propose({**state, "assignments": assignments}, immediate=True))

    # -- entity-scoped writes ----------------------------------------------

    async def save_roster_entry(self, entry: dict[str, Any]) -> ProposeResult:
        record = self._entity_record(entry)
        players = list(self._view.data.get("players") or [])
        for index, player in enumerate(players):
            if str(player.get("id")) == record["id"]:
                players[index] = {**player, **record}
                break
        else:
            players.append(record)
        return await self._write_entity("players", record, {"players": players})

    async def delete_roster_entry(self, entry_id: Any) -> ProposeResult:
        entry_id = str(entry_id)
        players = [p for p in (self._view.data.get("players") or []) if str(p.get("id")) != entry_id]
        return await self._delete_entity("players", entry_id, {"players": players})

    async def save_journal_page(self, page: dict[str, Any]) -> ProposeResult:
        record = self._entity_record(page)
        record.setdefault("created", self._now_ms())
        if self._params is not None:
            record.setdefault("ownerId", self._params.user_id)
        pages = dict(self._view.data.get("journal_pages") or {})
        pages[record["id"]] = {**pages.get(record["id"], {}), **record}
        return await self._write_entity("journal", record, {"journal_pages": pages})

    async def delete_journal_page(self, page_id: Any) -> ProposeResult:
        page_id = str(page_id)
        pages = dict(self._view.data.get("journal_pages") or {})
        pages.pop(page_id, None)
        return await self._delete_entity("journal", page_id, {"journal_pages": pages})

    def _entity_record(self, entity: dict[str, Any]) -> dict[str, Any]:
        self._require_session()
        record = sanitize(entity)
        if not isinstance(record, dict):
            raise SanitizationError("entity must be a mapping")
        record["id"] = str(record.get("id") or uuid.uuid4().hex)
        return record

    async def _write_entity(self, collection: str, record: dict[str, Any], patch: dict[str, Any]) -> ProposeResult:
        params = self._require_session()
        self._coordinator.apply_local(patch)
        if params.offline:
            return ProposeResult(status="stored_offline")
        path = join_path(self._coordinator.root_path, COLLECTIONS[collection], record["id"])
        return await self._coordinator.write_entity(path, record)

    async def _delete_entity(self, collection: str, entity_id: str, patch: dict[str, Any]) -> ProposeResult:
        params = self._require_session()
        self._coordinator.apply_local(patch)
        if params.offline:
            return ProposeResult(status="stored_offline")
        path = join_path(self._coordinator.root_path, COLLECTIONS[collection], entity_id)
        return await self._coordinator.delete_entity(path)

    # -- chat & ephemeral events -------------------------------------------

    async def send_chat(
        self,
        kind: str,
        content: str,
        *,
        target_id: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ProposeResult:
        if kind not in CHAT_KINDS or kind in EPHEMERAL_KINDS:
            raise ValueError(f"not a chat message kind: {kind}")
        params = self._require_session()
        entry = build_chat_entry(
            kind,
            params.user_id,
            self._now_ms(),
            content=content,
            target_id=target_id,
            payload=sanitize(extra or {}),
        )
        return await self._append_chat(entry)

    async def send_ephemeral_event(self, kind: str, payload: dict[str, Any] | None = None) -> ProposeResult:
        if kind not in EPHEMERAL_KINDS:
            raise ValueError(f"not an ephemeral event kind: {kind}")
        params = self._require_session()
        if params.offline:
            return ProposeResult(status="skipped", reason="offline")
        entry = build_chat_entry(kind, params.user_id, self._now_ms(), payload=sanitize(payload or {}))
        return await self._coordinator.add_entity(self._collection_path("chat"), entry)

    async def roll_dice(self, sides: int) -> int:
        if sides < 2:
            raise ValueError("a die needs at least two sides")
        result = self._rng.randint(1, sides)
        await self.send_chat("roll", f"d{sides}: {result}", extra={"die": f"d{sides}", "result": result})
        return result

    async def _append_chat(self, entry: dict[str, Any]) -> ProposeResult:
        params = self._require_session()
        if params.offline:
            entry = {**entry, "id": uuid.uuid4().hex}
            chat_log = list(self._view.data.get("chatLog") or []) + [entry]
            self._coordinator.apply_local({"chatLog": chat_log[-self._config.chat_history_limit:]})
            return ProposeResult(status="stored_offline")
        return await self._coordinator.add_entity(self._collection_path("chat"), entry)

    # -- moderation --------------------------------------------------------

    async def kick(self, user_id: str) -> ModerationResult:
        return await self._moderate(kick_member, user_id)

    async def ban(self, user_id: str) -> ModerationResult:
        return await self._moderate(ban_member, user_id)

    async def unban(self, user_id: str) -> ModerationResult:
        return await self._moderate(unban_member, user_id)

    async def set_elevated(self, user_id: str, elevated: bool) -> ModerationResult:
        return await self._moderate(set_elevated, user_id, elevated)

    async def _moderate(self, transition: Callable[..., dict[str, Any]], *args: Any) -> ModerationResult:
        params = self._require_session()
        try:
            next_state = transition(self._view.data, params.user_id, *args)
        except AuthorizationError as exc:
            self._logger.info("Moderation %s rejected: %s", transition.__name__, exc.reason)
            return ModerationResult(status="rejected", reason=exc.reason)
        return self._as_moderation(await self.propose(next_state, immediate=True))

    @staticmethod
    def _as_moderation(result: ProposeResult) -> ModerationResult:
        if result.status == "error":
            return ModerationResult(status="error", reason=result.reason)
        return ModerationResult(status="ok")

    # -- reference material ------------------------------------------------

    async def upload_lore(self, chunks: list[dict[str, Any]], source: str = "PDF") -> ProposeResult:
        params = self._require_session()
        volumes = pack_lore(
            sanitize(chunks),
            max_chars=self._config.lore_volume_max_chars,
            overhead_chars=self._config.lore_chunk_overhead_chars,
        )
        if params.offline:
            lore = list(self._view.data.get("loreChunks") or [])
            for volume in volumes:
                lore.extend(volume)
            self._coordinator.apply_local({"loreChunks": lore})
            return ProposeResult(status="stored_offline")
        writes = [
            WriteOp(
                kind="set",
                path=join_path(self._collection_path("lore"), uuid.uuid4().hex),
                data={"source": source, "index": index, "chunks": volume},
            )
            for index, volume in enumerate(volumes)
        ]
        if not writes:
            return ProposeResult(status="persisted")
        return await self._coordinator.commit_batch(writes)

    async def ingest_lore(self, source: Any, name: str = "PDF") -> ProposeResult:
        if self._ingestion is None:
            raise SessionStateError("no document ingestion provider configured")
        pages = await self._ingestion.extract_pages(source)
        chunks = chunks_from_pages(pages, source=name, min_chars=self._config.lore_min_page_chars)
        self._logger.info("Ingested %s: %d usable pages", name, len(chunks))
        return await self.upload_lore(chunks, source=name)

    def search_lore(self, query: str) -> list[dict[str, Any]]:
        pages = {str(p.get("id")): p for p in self.visible_journal_pages()}
        return retrieve_context(
            query,
            self._view.data.get("loreChunks") or [],
            pages,
            limit=self._config.lore_search_limit,
        )

    async def ask_assistant(self, question: str, *, public: bool = False) -> str:
        if self._completion is None:
            raise SessionStateError("no text completion provider configured")
        params = self._require_session()
        context = self.search_lore(question)
        recent = "\n".join(
            f"{entry.get('senderId')}: {entry.get('content')}"
            for entry in self.visible_chat()[-10:]
            if entry.get("content")
        )
        messages = build_assistant_messages(question, context, recent_chat=recent, public=public)
        answer = await self._completion.complete(messages) or "AI Error."
        if public:
            await self.send_chat("ai_public", answer)
        else:
            await self.send_chat("ai_private", answer, target_id=params.user_id)
        return answer

    # -- helpers -----------------------------------------------------------

    def _collection_path(self, collection: str) -> str:
        return join_path(self._coordinator.root_path, COLLECTIONS[collection])

    def _require_session(self) -> SessionParams:
        if self._params is None:
            if self.status == "banished":
                raise BanishedError("this identity was banned from the campaign")
            if self.status == "not_found":
                raise SessionNotFoundError("campaign does not exist")
            raise SessionStateError(f"no active session (status: {self.status})")
        return self._params

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)
