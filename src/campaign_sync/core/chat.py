from __future__ import annotations

from typing import Any

from .membership import is_elevated

PUBLIC_KINDS = frozenset({"chat", "ai_public", "roll", "ping", "vfx"})
PRIVATE_KINDS = frozenset({"whisper", "ai_private"})
EPHEMERAL_KINDS = frozenset({"ping", "vfx"})
CHAT_KINDS = PUBLIC_KINDS | PRIVATE_KINDS


def visibility_for(kind: str) -> str:
    if kind in PRIVATE_KINDS:
        return "private"
    if kind in PUBLIC_KINDS:
        return "public"
    raise ValueError(f"unknown chat entry kind: {kind}")


def build_chat_entry(
    kind: str,
    sender_id: str | None,
    timestamp_ms: int,
    *,
    content: str | None = None,
    target_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> dict[str, Any]:
    visibility = visibility_for(kind)
    if kind == "whisper" and not target_id:
        raise ValueError("whisper requires a target")
    entry: dict[str, Any] = dict(payload or {})
    entry.update(
        {
            "type": kind,
            "senderId": sender_id,
            "targetId": target_id,
            "content": content,
            "visibility": visibility,
            "timestamp": timestamp_ms,
        }
    )
    return entry


def can_see_entry(entry: dict[str, Any], user_id: str | None) -> bool:
    visibility = entry.get("visibility")
    if visibility is None:
        kind = entry.get("type")
        visibility = "private" if kind in PRIVATE_KINDS else "public"
    if visibility != "private":
        return True
    return bool(user_id) and user_id in (entry.get("senderId"), entry.get("targetId"))


def visible_chat(view: dict[str, Any], user_id: str | None) -> list[dict[str, Any]]:
    return [entry for entry in (view.get("chatLog") or []) if can_see_entry(entry, user_id)]


def visible_journal_pages(view: dict[str, Any], user_id: str | None) -> list[dict[str, Any]]:
    pages = list((view.get("journal_pages") or {}).values())
    pages.sort(key=lambda p: p.get("created") or 0, reverse=True)
    if is_elevated(view, user_id):
        return pages
    assigned = (view.get("assignments") or {}).get(user_id) if user_id else None
    allowed_keys = {str(k) for k in (user_id, assigned) if k is not None}
    out = []
    for page in pages:
        if page.get("isPublic") or (user_id and page.get("ownerId") == user_id):
            out.append(page)
        elif allowed_keys & {str(k) for k in (page.get("visibleTo") or [])}:
            out.append(page)
    return out
