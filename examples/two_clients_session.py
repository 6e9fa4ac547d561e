from __future__ import annotations

import asyncio
import logging

from campaign_sync import CampaignSession, Identity
from campaign_sync.persistence.sqlalchemy import (
    SQLAlchemyDocumentStore,
    SQLAlchemyLocalStore,
    SQLAlchemyUnitOfWork,
    build_engine,
    build_session_factory,
    create_schema,
)


def make_uow_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    session_factory = build_session_factory(engine)

    def _uow_factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _uow_factory


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    uow_factory = make_uow_factory()
    store = SQLAlchemyDocumentStore(uow_factory)
    local_store = SQLAlchemyLocalStore(uow_factory)

    host = CampaignSession(store, local_store)
    player = CampaignSession(store, local_store)

    await host.join("harbor", "dm", Identity("host-1", "Mira"))
    await host.drain()
    await player.join("HARBOR", "player", Identity("player-1", "Tamsin"))
    await player.drain()
    print("present:", player.state["activeUsers"])

    await host.dispatch_map_action("set_image", "https://cdn.example/maps/harbor.png")
    await host.dispatch_map_action("add_token", {"id": "t1", "name": "Tamsin", "x": 2, "y": 3})
    await host.dispatch_map_action("move_token", {"id": "t1", "x": 4, "y": 3})
    print("player sees tokens:", player.state["campaign"]["activeMap"]["tokens"])

    await host.send_chat("whisper", "The harbormaster is lying.", target_id="player-1")
    print("player chat:", [entry["content"] for entry in player.visible_chat()])

    player.on_terminal(lambda reason: print("player session ended:", reason))
    result = await host.ban("player-1")
    print("ban:", result.status, "player status:", player.status)

    await host.leave()


if __name__ == "__main__":
    asyncio.run(main())
