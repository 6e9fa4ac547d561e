from __future__ import annotations

from typing import Protocol


class DocumentRepo(Protocol):
    def get(self, path: str): ...
    def list_collection(self, collection_path: str): ...
    def upsert(self, path: str, collection_path: str, doc_id: str, data_json: str): ...
    def delete(self, path: str) -> int: ...


class LocalEntryRepo(Protocol):
    def get(self, key: str): ...
    def put(self, key: str, value_json: str): ...
    def delete(self, key: str) -> int: ...


class UnitOfWork(Protocol):
    documents: DocumentRepo
    local_entries: LocalEntryRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
