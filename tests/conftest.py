from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from campaign_sync.core.scheduling import ManualScheduler
from campaign_sync.core.session import CampaignSession
from campaign_sync.core.types import Identity
from campaign_sync.persistence.sqlalchemy import (
    SQLAlchemyDocumentStore,
    SQLAlchemyLocalStore,
    SQLAlchemyUnitOfWork,
    build_engine,
    build_session_factory,
    create_schema,
)


class RecordingStore(SQLAlchemyDocumentStore):
    """Document store that remembers every root-level set_document call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.set_calls: list[tuple[str, dict, bool]] = []
        self.fail_writes = False

    async def set_document(self, path, data, *, merge=False):
        if self.fail_writes:
            raise ConnectionError("backend unavailable")
        self.set_calls.append((path, data, merge))
        await super().set_document(path, data, merge=merge)


class StepClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(milliseconds=1)
        return self.now


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def store(uow_factory):
    return RecordingStore(uow_factory)


@pytest.fixture()
def local_store(uow_factory):
    return SQLAlchemyLocalStore(uow_factory)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def make_session(store, local_store, scheduler):
    def _make(**kwargs):
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("clock", StepClock())
        return CampaignSession(store, local_store, **kwargs)

    return _make


@pytest.fixture()
def host_identity():
    return Identity(user_id="host-1", display_name="Hostess")


@pytest.fixture()
def player_identity():
    return Identity(user_id="player-1", display_name="Rogue")
