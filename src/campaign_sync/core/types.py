from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Identity:
    user_id: str
    display_name: str = "Anonymous"


@dataclass
class SessionParams:
    code: str
    role: str
    user_id: str
    offline: bool = False

    @property
    def is_host(self) -> bool:
        return self.role == "dm"


@dataclass
class DocumentSnapshot:
    id: str
    path: str
    exists: bool
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncEvent:
    kind: str
    payload: Any = None


@dataclass
class ProposeResult:
    status: str
    reason: Optional[str] = None


@dataclass
class ModerationResult:
    status: str
    reason: Optional[str] = None


@dataclass
class WriteOp:
    kind: str
    path: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


@dataclass(frozen=True)
class ArrayUnion:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class ArrayRemove:
    values: tuple[Any, ...]


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()
