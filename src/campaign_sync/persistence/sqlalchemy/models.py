from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class StoredDocument(TimestampMixin, Base):
    __tablename__ = "cs_documents"

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    collection_path: Mapped[str] = mapped_column(String(512), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(128), nullable=False)
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


Index("ix_cs_documents_collection", StoredDocument.collection_path, StoredDocument.doc_id)


class LocalEntry(TimestampMixin, Base):
    __tablename__ = "cs_local_entries"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
