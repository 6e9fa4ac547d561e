from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Sequence

from .types import DocumentSnapshot, Identity, WriteOp

Unsubscribe = Callable[[], None]
DocumentListener = Callable[[DocumentSnapshot], None]
CollectionListener = Callable[[list[DocumentSnapshot]], None]


class DocumentStorePort(Protocol):
    """Remote document database with per-document real-time subscriptions.

    Listeners receive the current snapshot on subscribe and again after
    every committed write touching the document (or collection).
    """

    def subscribe_document(self, path: str, listener: DocumentListener) -> Unsubscribe:
        ...

    def subscribe_collection(
        self,
        path: str,
        listener: CollectionListener,
        *,
        order_by: str | None = None,
        limit_to_last: int | None = None,
    ) -> Unsubscribe:
        ...

    async def get_document(self, path: str) -> DocumentSnapshot:
        ...

    async def set_document(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None:
        ...

    async def update_document(self, path: str, fields: dict[str, Any]) -> None:
        ...

    async def add_document(self, collection_path: str, data: dict[str, Any]) -> str:
        ...

    async def delete_document(self, path: str) -> None:
        ...

    async def commit_batch(self, writes: Sequence[WriteOp]) -> None:
        ...


class LocalStorePort(Protocol):
    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class ScheduledHandle(Protocol):
    def cancel(self) -> None:
        ...


class SchedulerPort(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> ScheduledHandle:
        ...

    def spawn(self, factory: Callable[[], Awaitable[None]]) -> None:
        ...

    async def drain(self) -> None:
        ...


class IdentityPort(Protocol):
    def current_identity(self) -> Identity | None:
        ...


class BlobUploadPort(Protocol):
    async def upload(self, data: bytes, path: str) -> str:
        ...


class TextCompletionPort(Protocol):
    async def complete(self, messages: list[dict[str, str]]) -> str | None:
        ...


class DocumentIngestionPort(Protocol):
    async def extract_pages(self, source: Any) -> list[tuple[int, str]]:
        ...
