from __future__ import annotations

import logging
from typing import Any, Callable

from .maps import DEFAULT_GRID_SIZE, default_active_map
from .types import DocumentSnapshot, SyncEvent

# View keys owned by sub-collection streams; never written through the root document.
SUBCOLLECTION_KEYS = ("players", "journal_pages", "chatLog", "loreChunks")

COLLECTIONS = {
    "players": "players",
    "journal": "journal",
    "chat": "chat",
    "lore": "lore",
}

ViewListener = Callable[[dict[str, Any]], None]


def genesis_payload(host_id: str | None, *, grid_size: float = DEFAULT_GRID_SIZE) -> dict[str, Any]:
    return {
        "hostId": host_id,
        "dmIds": [host_id] if host_id else [],
        "locations": [],
        "npcs": [],
        "handouts": [],
        "activeUsers": {},
        "bannedUsers": [],
        "assignments": {},
        "onboardingComplete": False,
        "config": {"edition": "2014", "strictMode": True},
        "campaignMembers": [],
        "campaign": {
            "genesis": {
                "tone": "Heroic",
                "conflict": "Dragon vs Kingdom",
                "campaignName": "New Campaign",
            },
            "activeMap": default_active_map(None, grid_size),
            "savedMaps": [],
            "activeHandout": None,
            "location": "Start",
            "combat": {"active": False, "round": 1, "turn": 0, "combatants": []},
        },
    }


def initial_view(host_id: str | None = None, *, grid_size: float = DEFAULT_GRID_SIZE) -> dict[str, Any]:
    view = genesis_payload(host_id, grid_size=grid_size)
    view.update({"players": [], "journal_pages": {}, "chatLog": [], "loreChunks": []})
    return view


def split_root_fields(state: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in state.items() if key not in SUBCOLLECTION_KEYS}


def fold_event(view: dict[str, Any], event: SyncEvent) -> dict[str, Any]:
    """Fold one tagged stream event into a new view.

    Each kind replaces only the top-level keys it owns, so events from
    different streams commute.
    """
    kind = event.kind
    if kind == "root":
        return {**view, **split_root_fields(event.payload or {})}
    if kind == "local":
        return {**view, **(event.payload or {})}
    if kind == "players":
        return {**view, "players": [{"id": s.id, **s.data} for s in _snapshots(event)]}
    if kind == "journal":
        return {**view, "journal_pages": {s.id: {"id": s.id, **s.data} for s in _snapshots(event)}}
    if kind == "chat":
        return {**view, "chatLog": [{**s.data, "id": s.id} for s in _snapshots(event)]}
    if kind == "lore":
        volumes = sorted(
            _snapshots(event),
            key=lambda s: (str(s.data.get("source") or ""), int(s.data.get("index") or 0), s.id),
        )
        chunks: list[Any] = []
        for volume in volumes:
            chunks.extend(volume.data.get("chunks") or [])
        return {**view, "loreChunks": chunks}
    raise ValueError(f"unknown sync event kind: {kind}")


def _snapshots(event: SyncEvent) -> list[DocumentSnapshot]:
    return [s for s in (event.payload or []) if s.exists]


class CampaignView:
    """The merged, locally readable campaign state for one client.

    Only the multiplexer and the write coordinator call ``apply``; every
    other component reads ``data`` and treats it as immutable.
    """

    def __init__(self, initial: dict[str, Any] | None = None, logger: logging.Logger | None = None):
        self._data: dict[str, Any] = initial if initial is not None else initial_view()
        self._listeners: list[ViewListener] = []
        self._logger = logger or logging.getLogger(__name__)

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def apply(self, event: SyncEvent, *, publish: bool = True) -> dict[str, Any]:
        self._data = fold_event(self._data, event)
        if publish:
            self._publish()
        return self._data

    def reset(self, data: dict[str, Any] | None = None) -> None:
        self._data = data if data is not None else initial_view()

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._data)
            except Exception:
                self._logger.exception("View listener failed")
