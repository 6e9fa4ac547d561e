from __future__ import annotations

import asyncio
import random

import pytest

from campaign_sync.core.errors import BanishedError, PersistenceError, SessionNotFoundError
from campaign_sync.core.normalize import parse_json_dict
from campaign_sync.core.types import Identity


class FakeCompletion:
    def __init__(self, answer: str):
        self.answer = answer
        self.calls = []

    async def complete(self, messages):
        self.calls.append(messages)
        return self.answer


class FakeIngestion:
    def __init__(self, pages):
        self.pages = pages

    async def extract_pages(self, source):
        return list(self.pages)


class FakeBlobUpload:
    def __init__(self):
        self.uploads = []

    async def upload(self, data, path):
        self.uploads.append((data, path))
        return f"https://cdn.example/{path}"


async def _table(make_session, host_identity, player_identity, **host_kwargs):
    host = make_session(**host_kwargs)
    player = make_session()
    await host.join("abc", "dm", host_identity)
    await host.drain()
    await player.join("ABC", "player", player_identity)
    await player.drain()
    return host, player


def test_host_creates_campaign_and_members_announce_presence(make_session, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)

        assert host.status == "live"
        assert player.status == "live"
        assert host.state["hostId"] == "host-1"
        assert host.state["activeUsers"] == {"host-1": "Hostess", "player-1": "Rogue"}
        assert player.state["activeUsers"] == host.state["activeUsers"]
        assert [m["uid"] for m in host.state["campaignMembers"]] == ["host-1", "player-1"]
        assert host.state["campaignMembers"][1]["role"] == "player"
        assert host.is_elevated()
        assert not player.is_elevated()
        assert player.is_elevated("host-1")

    asyncio.run(run_test())


def test_joining_unknown_campaign_as_player_ends_session(make_session, player_identity):
    async def run_test():
        player = make_session()
        reasons = []
        player.on_terminal(reasons.append)
        await player.join("nope", "player", player_identity)
        assert reasons == ["not_found"]
        assert player.status == "not_found"
        assert player.params is None
        with pytest.raises(SessionNotFoundError):
            await player.dispatch_map_action("clear_fog")

    asyncio.run(run_test())


def test_ban_tears_down_target_and_blocks_rejoin(make_session, store, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)
        reasons = []
        player.on_terminal(reasons.append)

        result = await host.ban("player-1")
        assert result.status == "ok"
        assert reasons == ["banished"]
        assert player.status == "banished"
        assert host.state["bannedUsers"] == ["player-1"]
        assert "player-1" not in host.state["activeUsers"]

        await host.propose({**host.state, "campaign": {**host.state["campaign"], "location": "Vault"}}, immediate=True)
        assert player.state["campaign"]["location"] == "Start"

        await player.join("ABC", "player", player_identity)
        await player.drain()
        assert reasons == ["banished", "banished"]
        with pytest.raises(BanishedError):
            await player.send_chat("chat", "let me back in")
        assert "player-1" not in host.state["activeUsers"]

        result = await host.unban("player-1")
        assert result.status == "ok"
        assert host.state["bannedUsers"] == []
        assert "player-1" not in host.state["activeUsers"]

    asyncio.run(run_test())


def test_moderation_guards(make_session, store, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)
        writes_before = len(store.set_calls)

        assert (await player.kick("host-1")).reason == "not_elevated"
        assert (await player.update_combat({"active": True})).status == "rejected"
        assert (await host.ban("host-1")).reason == "cannot_ban_self"
        assert (await host.set_elevated("host-1", False)).reason == "last_elevated_member"
        assert len(store.set_calls) == writes_before

        assert (await host.set_elevated("player-1", True)).status == "ok"
        assert player.is_elevated()
        assert (await player.kick("host-1")).status == "ok"
        assert "host-1" not in player.state["activeUsers"]

    asyncio.run(run_test())


def test_map_actions_propagate_between_clients(make_session, scheduler, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)

        assert (await host.dispatch_map_action("set_image", "cave.png")).status == "persisted"
        assert player.state["campaign"]["activeMap"]["url"] == "cave.png"

        result = await host.dispatch_map_action("start_path", {"mode": "reveal", "points": [{"x": 1, "y": 1}]})
        assert result.status == "scheduled"
        await host.dispatch_map_action("append_point", {"x": 2, "y": 2})
        assert len(host.state["campaign"]["activeMap"]["revealPaths"]) == 1
        assert player.state["campaign"]["activeMap"]["revealPaths"] == []

        await scheduler.advance(1)
        paths = player.state["campaign"]["activeMap"]["revealPaths"]
        assert paths[0]["points"] == [{"x": 1, "y": 1}, {"x": 2, "y": 2}]

        await host.dispatch_map_action("set_image", "forest.png")
        assert [m["url"] for m in player.state["campaign"]["savedMaps"]] == ["cave.png"]
        await host.dispatch_map_action("load_map", {"url": "cave.png"})
        active = player.state["campaign"]["activeMap"]
        assert active["url"] == "cave.png"
        assert active["revealPaths"] == paths
        assert {m["url"] for m in player.state["campaign"]["savedMaps"]} == {"cave.png", "forest.png"}

        cleared = await host.clear_heavy_fields()
        assert cleared.status == "ok"
        assert player.state["campaign"]["savedMaps"] == []
        assert player.state["campaign"]["activeMap"]["revealPaths"] == []

    asyncio.run(run_test())


def test_uploaded_map_image_becomes_active(make_session, host_identity, player_identity):
    async def run_test():
        blobs = FakeBlobUpload()
        host, player = await _table(make_session, host_identity, player_identity, blob_upload=blobs)
        url = await host.upload_map_image(b"\x89PNG", "maps/abc/cave.png")
        assert url == "https://cdn.example/maps/abc/cave.png"
        assert player.state["campaign"]["activeMap"]["url"] == url

    asyncio.run(run_test())


def test_roster_assignment_and_journal_visibility(make_session, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)

        assert (await host.save_roster_entry({"id": 7, "name": "Vex", "hp": 12})).status == "persisted"
        assert player.state["players"] == [{"id": "7", "name": "Vex", "hp": 12}]
        await host.assign_roster_entry("player-1", "7")
        assert player.state["assignments"] == {"player-1": "7"}

        await host.save_journal_page({"id": "secret", "title": "Villain plan", "content": "..."})
        await host.save_journal_page({"id": "hook", "title": "Letter", "visibleTo": ["7"]})
        await host.save_journal_page({"id": "town", "title": "Town", "isPublic": True})
        await player.save_journal_page({"id": "diary", "title": "Diary"})

        assert {p["id"] for p in host.visible_journal_pages()} == {"secret", "hook", "town", "diary"}
        assert {p["id"] for p in player.visible_journal_pages()} == {"hook", "town", "diary"}
        assert player.state["journal_pages"]["diary"]["ownerId"] == "player-1"

        await host.delete_roster_entry(7)
        await host.delete_journal_page("town")
        assert player.state["players"] == []
        assert "town" not in player.state["journal_pages"]

    asyncio.run(run_test())


def test_chat_whispers_pings_and_dice(make_session, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)
        bard = make_session(rng=random.Random(7))
        await bard.join("ABC", "player", Identity("player-2", "Bard"))
        await bard.drain()

        await host.send_chat("chat", "Welcome")
        await host.send_chat("whisper", "The door is trapped", target_id="player-1")
        await player.send_ephemeral_event("ping", {"x": 3, "y": 4})
        rolled = await bard.roll_dice(20)
        assert 1 <= rolled <= 20

        def contents(session):
            return {e.get("content") for e in session.visible_chat()}

        assert "The door is trapped" in contents(player)
        assert "The door is trapped" in contents(host)
        assert "The door is trapped" not in contents(bard)
        assert f"d20: {rolled}" in contents(player)

        pings = [e for e in player.state["chatLog"] if e["type"] == "ping"]
        assert pings[0]["x"] == 3 and pings[0]["senderId"] == "player-1"
        roll = next(e for e in host.state["chatLog"] if e["type"] == "roll")
        assert roll["result"] == rolled

    asyncio.run(run_test())


def test_lore_ingest_search_and_assistant(make_session, host_identity, player_identity):
    async def run_test():
        text = "The red dragon Ashfang sleeps beneath Mount Cinder and guards the crown."
        completion = FakeCompletion("Ashfang sleeps under Mount Cinder.")
        host, player = await _table(
            make_session,
            host_identity,
            player_identity,
            completion=completion,
            ingestion=FakeIngestion([(1, "cover"), (2, text)]),
        )

        assert (await host.ingest_lore(b"%PDF", "Monster Guide")).status == "persisted"
        assert [c["id"] for c in player.state["loreChunks"]] == ["page-2"]
        hits = player.search_lore("where does the dragon sleep")
        assert hits[0]["source"] == "PDF Page 2"

        answer = await host.ask_assistant("Where does the dragon sleep?")
        assert answer == "Ashfang sleeps under Mount Cinder."
        system = completion.calls[0][0]["content"]
        assert "[BOOK: Page 2]" in system
        assert answer in {e.get("content") for e in host.visible_chat()}
        assert answer not in {e.get("content") for e in player.visible_chat()}

        await host.ask_assistant("Describe the mountain", public=True)
        assert any(e["type"] == "ai_public" for e in player.visible_chat())

    asyncio.run(run_test())


def test_leave_flushes_pending_write(make_session, store, host_identity, player_identity):
    async def run_test():
        host, player = await _table(make_session, host_identity, player_identity)
        seen = []
        player.subscribe(seen.append)

        await host.propose({**host.state, "campaign": {**host.state["campaign"], "location": "Docks"}})
        assert host.has_pending_write
        await host.leave()

        assert host.status == "left"
        assert store.set_calls[-1][1]["campaign"]["location"] == "Docks"
        assert player.state["campaign"]["location"] == "Docks"
        assert seen[-1]["campaign"]["location"] == "Docks"

    asyncio.run(run_test())


def test_offline_entities_and_chat_stay_local(make_session, store, local_store, host_identity):
    async def run_test():
        session = make_session()
        await session.join("", "dm", host_identity, offline=True)

        assert (await session.save_roster_entry({"name": "Vex"})).status == "stored_offline"
        assert (await session.send_chat("chat", "solo night")).status == "stored_offline"
        assert (await session.send_ephemeral_event("ping", {"x": 0, "y": 0})).status == "skipped"
        assert (await session.upload_lore([{"id": "n1", "content": "notes"}])).status == "stored_offline"

        stored = parse_json_dict(local_store.get_item("campaign_local_data"))
        assert stored["players"][0]["name"] == "Vex"
        assert [e["content"] for e in stored["chatLog"]] == ["solo night"]
        assert stored["loreChunks"] == [{"id": "n1", "content": "notes"}]
        assert store.set_calls == []

    asyncio.run(run_test())


def test_failed_campaign_creation_is_reported_and_retried_on_rejoin(make_session, store, host_identity):
    async def run_test():
        store.fail_writes = True
        host = make_session()
        await host.join("new1", "dm", host_identity)
        await host.drain()
        assert host.status == "connecting"
        assert isinstance(host.last_persistence_error, PersistenceError)
        assert "backend unavailable" in str(host.last_persistence_error)

        store.fail_writes = False
        await host.join("new1", "dm", host_identity)
        await host.drain()
        assert host.status == "live"
        assert host.state["hostId"] == "host-1"
        assert host.last_persistence_error is None

    asyncio.run(run_test())


def test_user_ids_with_dots_are_rejected(make_session, store):
    async def run_test():
        session = make_session()
        with pytest.raises(ValueError):
            await session.join("ABC", "dm", Identity("alice.smith", "Alice"))
        assert session.status == "idle"
        assert store.set_calls == []

    asyncio.run(run_test())
