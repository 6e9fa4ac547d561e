from __future__ import annotations

import uuid
from typing import Any, Callable

from .errors import MapActionError

DEFAULT_GRID_SIZE = 5
DEFAULT_LIGHTING = "daylight"

# Discrete actions are written through at once; stroke and view updates
# arrive in bursts and go through the debounce window.
IMMEDIATE_ACTIONS = frozenset(
    {"set_image", "load_map", "move_token", "update_token", "rename_map", "delete_map"}
)

_SNAPSHOT_FIELDS = ("revealPaths", "tokens", "view", "gridSize", "lighting")


def default_view() -> dict[str, Any]:
    return {"zoom": 1, "pan": {"x": 0, "y": 0}}


def default_active_map(url: str | None = None, grid_size: float = DEFAULT_GRID_SIZE) -> dict[str, Any]:
    return {
        "url": url,
        "revealPaths": [],
        "tokens": [],
        "lighting": DEFAULT_LIGHTING,
        "gridSize": grid_size,
        "view": default_view(),
    }


def reduce_map(
    active_map: dict[str, Any] | None,
    saved_maps: list[dict[str, Any]] | None,
    action: str,
    payload: Any = None,
    *,
    now_ms: int = 0,
    new_id: Callable[[], str] | None = None,
    grid_size: float = DEFAULT_GRID_SIZE,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Apply one map action and return ``(active_map, saved_maps)``.

    Inputs are never mutated. Maps are identified by exact url equality.
    """
    current = _copy_map(active_map, grid_size)
    library = [dict(entry) for entry in (saved_maps or []) if isinstance(entry, dict)]
    make_id = new_id or (lambda: uuid.uuid4().hex)

    if action == "set_image":
        url = payload
        if not isinstance(url, str) or not url:
            raise MapActionError("set_image requires an image url")
        library = commit_active_map(current, library, now_ms=now_ms, new_id=make_id)
        entry = _find(library, url=url)
        if entry is not None:
            return _restore(entry, grid_size), library
        return default_active_map(url, grid_size), library

    if action == "load_map":
        ref = payload if isinstance(payload, dict) else {"id": payload}
        if _find(library, entry_id=ref.get("id"), url=ref.get("url")) is None:
            return current, library
        library = commit_active_map(current, library, now_ms=now_ms, new_id=make_id)
        fresh = _find(library, entry_id=ref.get("id"), url=ref.get("url"))
        return _restore(fresh, grid_size), library

    if action == "start_path":
        if not isinstance(payload, dict):
            raise MapActionError("start_path requires a path object")
        path = dict(payload)
        path["points"] = list(path.get("points") or [])
        current["revealPaths"] = current["revealPaths"] + [path]
        return current, library

    if action == "append_point":
        paths = current["revealPaths"]
        if not paths:
            return current, library
        last = dict(paths[-1])
        last["points"] = list(last.get("points") or []) + [payload]
        current["revealPaths"] = paths[:-1] + [last]
        return current, library

    if action == "update_view":
        if not isinstance(payload, dict):
            raise MapActionError("update_view requires {zoom, pan}")
        current["view"] = {"zoom": payload.get("zoom", 1), "pan": payload.get("pan") or {"x": 0, "y": 0}}
        return current, library

    if action == "clear_fog":
        current["revealPaths"] = []
        return current, library

    if action in ("move_token", "update_token"):
        if not isinstance(payload, dict) or payload.get("id") is None:
            raise MapActionError(f"{action} requires a token id")
        token_id = str(payload["id"])
        current["tokens"] = [
            {**token, **payload, "id": token.get("id")} if str(token.get("id")) == token_id else token
            for token in current["tokens"]
        ]
        return current, library

    if action == "delete_token":
        token_id = str(payload.get("id") if isinstance(payload, dict) else payload)
        current["tokens"] = [t for t in current["tokens"] if str(t.get("id")) != token_id]
        return current, library

    if action == "add_token":
        if not isinstance(payload, dict):
            raise MapActionError("add_token requires a token object")
        token = dict(payload)
        if token.get("id") is None:
            token["id"] = make_id()
        current["tokens"] = current["tokens"] + [token]
        return current, library

    if action == "rename_map":
        if not isinstance(payload, dict) or payload.get("id") is None:
            raise MapActionError("rename_map requires {id, name}")
        entry_id = str(payload["id"])
        name = str(payload.get("name") or "").strip()
        library = [
            {**entry, "name": name} if str(entry.get("id")) == entry_id and name else entry
            for entry in library
        ]
        return current, library

    if action == "delete_map":
        entry_id = str(payload.get("id") if isinstance(payload, dict) else payload)
        library = [entry for entry in library if str(entry.get("id")) != entry_id]
        return current, library

    raise MapActionError(f"unknown map action: {action}")


def commit_active_map(
    active_map: dict[str, Any],
    saved_maps: list[dict[str, Any]],
    *,
    now_ms: int,
    new_id: Callable[[], str],
) -> list[dict[str, Any]]:
    """Store the active map's state in the library entry sharing its url."""
    url = active_map.get("url")
    if not url:
        return list(saved_maps)
    snapshot = {key: _detach(active_map.get(key)) for key in _SNAPSHOT_FIELDS}
    out: list[dict[str, Any]] = []
    found = False
    for entry in saved_maps:
        if entry.get("url") == url and not found:
            out.append({**entry, **snapshot, "lastActive": now_ms})
            found = True
        else:
            out.append(entry)
    if not found:
        taken = {str(entry.get("id")) for entry in saved_maps}
        entry_id = new_id()
        while str(entry_id) in taken:
            entry_id = new_id()
        out.append(
            {
                "id": entry_id,
                "name": active_map.get("name") or f"Map {len(saved_maps) + 1}",
                "url": url,
                **snapshot,
                "lastActive": now_ms,
            }
        )
    return out


def _find(
    library: list[dict[str, Any]],
    *,
    entry_id: Any = None,
    url: Any = None,
) -> dict[str, Any] | None:
    if entry_id is not None:
        for entry in library:
            if str(entry.get("id")) == str(entry_id):
                return entry
    if url:
        for entry in library:
            if entry.get("url") == url:
                return entry
    return None


def _restore(entry: dict[str, Any], grid_size: float) -> dict[str, Any]:
    restored = default_active_map(entry.get("url"), grid_size)
    for key in _SNAPSHOT_FIELDS:
        if entry.get(key) is not None:
            restored[key] = _detach(entry[key])
    if entry.get("name"):
        restored["name"] = entry["name"]
    return restored


def _copy_map(active_map: dict[str, Any] | None, grid_size: float) -> dict[str, Any]:
    base = default_active_map(None, grid_size)
    if isinstance(active_map, dict):
        base.update(active_map)
    base["revealPaths"] = list(base.get("revealPaths") or [])
    base["tokens"] = list(base.get("tokens") or [])
    return base


def _detach(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _detach(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_detach(v) for v in value]
    return value
