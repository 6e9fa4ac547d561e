from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .models import LocalEntry, StoredDocument


class DocumentRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, path: str) -> StoredDocument | None:
        return self.session.get(StoredDocument, path)

    def list_collection(self, collection_path: str) -> list[StoredDocument]:
        stmt = (
            select(StoredDocument)
            .where(StoredDocument.collection_path == collection_path)
            .order_by(StoredDocument.created_at.asc(), StoredDocument.doc_id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def upsert(self, path: str, collection_path: str, doc_id: str, data_json: str) -> StoredDocument:
        row = self.get(path)
        if row is None:
            row = StoredDocument(
                path=path,
                collection_path=collection_path,
                doc_id=doc_id,
                data_json=data_json,
                row_version=1,
            )
            self.session.add(row)
        else:
            row.data_json = data_json
            row.row_version = row.row_version + 1
        self.session.flush()
        return row

    def delete(self, path: str) -> int:
        stmt = delete(StoredDocument).where(StoredDocument.path == path)
        return self.session.execute(stmt).rowcount or 0


class LocalEntryRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str) -> LocalEntry | None:
        return self.session.get(LocalEntry, key)

    def put(self, key: str, value_json: str) -> LocalEntry:
        row = self.get(key)
        if row is None:
            row = LocalEntry(key=key, value_json=value_json)
            self.session.add(row)
        else:
            row.value_json = value_json
        self.session.flush()
        return row

    def delete(self, key: str) -> int:
        stmt = delete(LocalEntry).where(LocalEntry.key == key)
        return self.session.execute(stmt).rowcount or 0
