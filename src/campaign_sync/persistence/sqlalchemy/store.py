from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ...core.errors import DocumentNotFoundError, DocumentTooLargeError
from ...core.normalize import dump_json, join_path, parse_json_dict, split_path
from ...core.ports import CollectionListener, DocumentListener, Unsubscribe
from ...core.types import DELETE_FIELD, ArrayRemove, ArrayUnion, DocumentSnapshot, WriteOp
from ..interfaces import UnitOfWork

DEFAULT_MAX_DOCUMENT_BYTES = 1_048_576


def apply_field_updates(base: dict[str, Any], fields: dict[str, Any], *, dotted: bool) -> dict[str, Any]:
    """Apply field writes and array/delete sentinels to ``base`` in place."""
    for key, value in fields.items():
        parts = key.split(".") if dotted else [key]
        target = base
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        leaf = parts[-1]
        if value is DELETE_FIELD:
            target.pop(leaf, None)
        elif isinstance(value, ArrayUnion):
            existing = target.get(leaf)
            items = list(existing) if isinstance(existing, list) else []
            for item in value.values:
                if item not in items:
                    items.append(item)
            target[leaf] = items
        elif isinstance(value, ArrayRemove):
            existing = target.get(leaf)
            items = list(existing) if isinstance(existing, list) else []
            target[leaf] = [item for item in items if item not in value.values]
        else:
            target[leaf] = value
    return base


@dataclass
class _CollectionSubscription:
    listener: CollectionListener
    order_by: str | None
    limit_to_last: int | None


class SQLAlchemyDocumentStore:
    """Document store over SQL tables with in-process real-time fan-out.

    Every write commits in its own unit of work and then notifies the
    listeners of each touched document and its parent collection.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        *,
        max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._max_document_bytes = max_document_bytes
        self._logger = logger or logging.getLogger(__name__)
        self._document_listeners: dict[str, list[DocumentListener]] = {}
        self._collection_listeners: dict[str, list[_CollectionSubscription]] = {}

    def subscribe_document(self, path: str, listener: DocumentListener) -> Unsubscribe:
        listeners = self._document_listeners.setdefault(path, [])
        listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        self._deliver(listener, self._read_document(path))
        return _unsubscribe

    def subscribe_collection(
        self,
        path: str,
        listener: CollectionListener,
        *,
        order_by: str | None = None,
        limit_to_last: int | None = None,
    ) -> Unsubscribe:
        subscription = _CollectionSubscription(listener, order_by, limit_to_last)
        subscriptions = self._collection_listeners.setdefault(path, [])
        subscriptions.append(subscription)

        def _unsubscribe() -> None:
            if subscription in subscriptions:
                subscriptions.remove(subscription)

        self._deliver(listener, self._read_collection(path, subscription))
        return _unsubscribe

    async def get_document(self, path: str) -> DocumentSnapshot:
        return self._read_document(path)

    async def set_document(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None:
        self._apply([WriteOp(kind="set", path=path, data=data, merge=merge)])

    async def update_document(self, path: str, fields: dict[str, Any]) -> None:
        self._apply([WriteOp(kind="update", path=path, data=fields)])

    async def add_document(self, collection_path: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self._apply([WriteOp(kind="set", path=join_path(collection_path, doc_id), data=data)])
        return doc_id

    async def delete_document(self, path: str) -> None:
        self._apply([WriteOp(kind="delete", path=path)])

    async def commit_batch(self, writes: Sequence[WriteOp]) -> None:
        self._apply(list(writes))

    def _apply(self, writes: list[WriteOp]) -> None:
        touched: list[tuple[str, str]] = []
        with self._uow_factory() as uow:
            for op in writes:
                collection_path, doc_id = split_path(op.path)
                row = uow.documents.get(op.path)
                current = parse_json_dict(row.data_json) if row is not None else None
                if op.kind == "delete":
                    uow.documents.delete(op.path)
                else:
                    data = self._next_data(op, current)
                    encoded = dump_json(data)
                    size = len(encoded.encode("utf-8"))
                    if size > self._max_document_bytes:
                        raise DocumentTooLargeError(op.path, size, self._max_document_bytes)
                    uow.documents.upsert(op.path, collection_path, doc_id, encoded)
                touched.append((op.path, collection_path))
            uow.commit()
        self._notify(touched)

    @staticmethod
    def _next_data(op: WriteOp, current: dict[str, Any] | None) -> dict[str, Any]:
        if op.kind == "set":
            if op.merge:
                return apply_field_updates(current or {}, op.data, dotted=False)
            return apply_field_updates({}, op.data, dotted=False)
        if op.kind == "update":
            if current is None:
                raise DocumentNotFoundError(op.path)
            return apply_field_updates(current, op.data, dotted=True)
        raise ValueError(f"unknown write kind: {op.kind}")

    def _notify(self, touched: list[tuple[str, str]]) -> None:
        seen_docs: set[str] = set()
        seen_collections: list[str] = []
        for path, collection_path in touched:
            if path not in seen_docs:
                seen_docs.add(path)
                listeners = list(self._document_listeners.get(path, []))
                if listeners:
                    snapshot = self._read_document(path)
                    for listener in listeners:
                        self._deliver(listener, snapshot)
            if collection_path not in seen_collections:
                seen_collections.append(collection_path)
        for collection_path in seen_collections:
            for subscription in list(self._collection_listeners.get(collection_path, [])):
                self._deliver(subscription.listener, self._read_collection(collection_path, subscription))

    def _read_document(self, path: str) -> DocumentSnapshot:
        _, doc_id = split_path(path)
        with self._uow_factory() as uow:
            row = uow.documents.get(path)
            if row is None:
                return DocumentSnapshot(id=doc_id, path=path, exists=False)
            return DocumentSnapshot(id=doc_id, path=path, exists=True, data=parse_json_dict(row.data_json))

    def _read_collection(self, path: str, subscription: _CollectionSubscription) -> list[DocumentSnapshot]:
        with self._uow_factory() as uow:
            snapshots = [
                DocumentSnapshot(id=row.doc_id, path=row.path, exists=True, data=parse_json_dict(row.data_json))
                for row in uow.documents.list_collection(path)
            ]
        if subscription.order_by:
            key = subscription.order_by
            snapshots.sort(key=lambda s: (s.data.get(key) is None, s.data.get(key) or 0))
        if subscription.limit_to_last is not None and subscription.limit_to_last >= 0:
            snapshots = snapshots[len(snapshots) - subscription.limit_to_last:] if subscription.limit_to_last else []
        return snapshots

    def _deliver(self, listener: Callable[[Any], None], payload: Any) -> None:
        try:
            listener(payload)
        except Exception:
            self._logger.exception("Subscription listener failed")


class SQLAlchemyLocalStore:
    """Key-value fallback used when no backend session exists."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self._uow_factory = uow_factory

    def get_item(self, key: str) -> str | None:
        with self._uow_factory() as uow:
            row = uow.local_entries.get(key)
            return row.value_json if row is not None else None

    def set_item(self, key: str, value: str) -> None:
        with self._uow_factory() as uow:
            uow.local_entries.put(key, value)
            uow.commit()

    def remove_item(self, key: str) -> None:
        with self._uow_factory() as uow:
            uow.local_entries.delete(key)
            uow.commit()
