from __future__ import annotations

import json
import math
import re
from typing import Any

from .errors import SanitizationError


class _Unset:
    """Marker for a field that is deliberately absent in a proposed state."""

    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


def normalize_session_code(value: str) -> str:
    value = (value or "").strip().upper()
    value = re.sub(r"[^A-Z0-9_-]", "", value)
    return value[:64]


def sanitize(value: Any) -> Any:
    """Return a detached copy of ``value`` with every ``UNSET`` replaced by ``None``.

    Only JSON-shaped data is accepted: dicts with string keys, lists or
    tuples, strings, numbers, booleans and ``None``. Non-finite floats
    become ``None``. Anything else, or a container that contains itself,
    raises ``SanitizationError`` before the caller has touched any state.
    """
    return _sanitize(value, set())


def _sanitize(value: Any, active: set[int]) -> Any:
    if value is UNSET or value is None:
        return None
    if isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        marker = id(value)
        if marker in active:
            raise SanitizationError("circular reference in proposed state")
        active.add(marker)
        try:
            out: dict[str, Any] = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SanitizationError(f"non-string key {key!r} in proposed state")
                out[key] = _sanitize(item, active)
            return out
        finally:
            active.discard(marker)
    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in active:
            raise SanitizationError("circular reference in proposed state")
        active.add(marker)
        try:
            return [_sanitize(item, active) for item in value]
        finally:
            active.discard(marker)
    raise SanitizationError(f"unsupported value of type {type(value).__name__} in proposed state")


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=True, separators=(",", ":"))


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into ``(collection_path, doc_id)``."""
    parts = [p for p in (path or "").strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def join_path(*parts: str) -> str:
    return "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))
