"""Role resolution and moderation transitions over the campaign document.

Every transition is a pure function: it validates first, raising
``AuthorizationError`` without touching anything, then returns a new
state with all affected fields changed together.
"""
from __future__ import annotations

from typing import Any

from .errors import AuthorizationError


def elevated_ids(state: dict[str, Any]) -> list[str]:
    """Identities currently holding the elevated role.

    While ``dmIds`` is empty the first present member counts as elevated.
    That member is derived at read time and never written back.
    """
    dm_ids = [str(uid) for uid in (state.get("dmIds") or [])]
    if dm_ids:
        return dm_ids
    active = state.get("activeUsers") or {}
    for uid in active:
        return [str(uid)]
    return []


def is_elevated(state: dict[str, Any], user_id: str | None) -> bool:
    if not user_id:
        return False
    return str(user_id) in elevated_ids(state)


def join_member(state: dict[str, Any], user_id: str, display_name: str) -> dict[str, Any]:
    if user_id in (state.get("bannedUsers") or []):
        raise AuthorizationError("banned")
    active = dict(state.get("activeUsers") or {})
    active[user_id] = display_name or "Anonymous"
    return {**state, "activeUsers": active}


def kick_member(state: dict[str, Any], actor_id: str, target_id: str) -> dict[str, Any]:
    _require_elevated(state, actor_id)
    active = dict(state.get("activeUsers") or {})
    active.pop(target_id, None)
    assignments = dict(state.get("assignments") or {})
    assignments.pop(target_id, None)
    return {**state, "activeUsers": active, "assignments": assignments}


def ban_member(state: dict[str, Any], actor_id: str, target_id: str) -> dict[str, Any]:
    _require_elevated(state, actor_id)
    if str(actor_id) == str(target_id):
        raise AuthorizationError("cannot_ban_self")
    dm_ids = [uid for uid in (state.get("dmIds") or [])]
    remaining = [uid for uid in dm_ids if uid != target_id]
    if dm_ids and not remaining:
        raise AuthorizationError("last_elevated_member")

    active = dict(state.get("activeUsers") or {})
    active.pop(target_id, None)
    assignments = dict(state.get("assignments") or {})
    assignments.pop(target_id, None)
    banned = list(state.get("bannedUsers") or [])
    if target_id not in banned:
        banned.append(target_id)
    return {
        **state,
        "activeUsers": active,
        "assignments": assignments,
        "bannedUsers": banned,
        "dmIds": remaining,
    }


def unban_member(state: dict[str, Any], actor_id: str, target_id: str) -> dict[str, Any]:
    _require_elevated(state, actor_id)
    banned = [uid for uid in (state.get("bannedUsers") or []) if uid != target_id]
    return {**state, "bannedUsers": banned}


def set_elevated(state: dict[str, Any], actor_id: str, target_id: str, elevated: bool) -> dict[str, Any]:
    _require_elevated(state, actor_id)
    # A derived first member keeps the role once dmIds is first written.
    dm_ids = list(state.get("dmIds") or []) or elevated_ids(state)
    if elevated:
        if target_id in (state.get("bannedUsers") or []):
            raise AuthorizationError("banned")
        if target_id not in dm_ids:
            dm_ids.append(target_id)
        return {**state, "dmIds": dm_ids}

    if target_id not in (state.get("dmIds") or []):
        return state
    remaining = [uid for uid in dm_ids if uid != target_id]
    if not remaining:
        raise AuthorizationError("last_elevated_member")
    return {**state, "dmIds": remaining}


def add_campaign_member(
    members: list[dict[str, Any]] | None,
    user_id: str,
    display_name: str,
    role: str,
    joined_ms: int,
) -> dict[str, Any] | None:
    """Return the roster record to add, or ``None`` if already listed."""
    if any(m.get("uid") == user_id for m in (members or []) if isinstance(m, dict)):
        return None
    return {"uid": user_id, "name": display_name or "Anonymous", "role": role, "joined": joined_ms}


def _require_elevated(state: dict[str, Any], actor_id: str) -> None:
    if not is_elevated(state, actor_id):
        raise AuthorizationError("not_elevated")
