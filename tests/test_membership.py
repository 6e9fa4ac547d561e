from __future__ import annotations

import copy

import pytest

from campaign_sync.core.errors import AuthorizationError
from campaign_sync.core.membership import (
    add_campaign_member,
    ban_member,
    elevated_ids,
    is_elevated,
    join_member,
    kick_member,
    set_elevated,
    unban_member,
)


def _state(**overrides):
    state = {
        "hostId": "u1",
        "dmIds": ["u1"],
        "activeUsers": {"u1": "Ann", "u2": "Bo"},
        "assignments": {"u2": "p7"},
        "bannedUsers": [],
    }
    state.update(overrides)
    return state


def test_first_present_member_is_elevated_while_no_dm_recorded():
    state = _state(dmIds=[], activeUsers={})
    state = join_member(state, "u1", "Ann")
    assert is_elevated(state, "u1")
    state = join_member(state, "u2", "Bo")
    assert elevated_ids(state) == ["u1"]
    assert not is_elevated(state, "u2")
    assert state["dmIds"] == []


def test_join_rejects_banned_identity():
    with pytest.raises(AuthorizationError) as excinfo:
        join_member(_state(bannedUsers=["u3"]), "u3", "Cy")
    assert excinfo.value.reason == "banned"


def test_ban_changes_all_fields_together():
    state = _state(dmIds=["u1", "u2"])
    out = ban_member(state, "u1", "u2")
    assert "u2" not in out["activeUsers"]
    assert "u2" not in out["assignments"]
    assert "u2" not in out["dmIds"]
    assert out["bannedUsers"] == ["u2"]
    assert not is_elevated(out, "u2")
    assert state["dmIds"] == ["u1", "u2"]


def test_ban_self_and_last_dm_are_rejected():
    state = _state()
    with pytest.raises(AuthorizationError) as excinfo:
        ban_member(state, "u1", "u1")
    assert excinfo.value.reason == "cannot_ban_self"

    state = _state(dmIds=["u2"], activeUsers={"u2": "Bo", "u1": "Ann"})
    with pytest.raises(AuthorizationError) as excinfo:
        ban_member(state, "u2", "u2")
    assert excinfo.value.reason == "cannot_ban_self"


def test_non_elevated_actor_cannot_moderate():
    state = _state()
    for transition in (kick_member, ban_member, unban_member):
        with pytest.raises(AuthorizationError) as excinfo:
            transition(state, "u2", "u1")
        assert excinfo.value.reason == "not_elevated"


def test_demoting_last_dm_is_rejected_and_state_unchanged():
    state = _state()
    before = copy.deepcopy(state)
    with pytest.raises(AuthorizationError) as excinfo:
        set_elevated(state, "u1", "u1", False)
    assert excinfo.value.reason == "last_elevated_member"
    assert state == before


def test_promote_and_demote():
    state = set_elevated(_state(), "u1", "u2", True)
    assert state["dmIds"] == ["u1", "u2"]
    state = set_elevated(state, "u2", "u1", False)
    assert state["dmIds"] == ["u2"]
    with pytest.raises(AuthorizationError):
        set_elevated(_state(bannedUsers=["u3"]), "u1", "u3", True)


def test_unban_does_not_restore_prior_membership():
    banned = ban_member(_state(dmIds=["u1", "u2"]), "u1", "u2")
    out = unban_member(banned, "u1", "u2")
    assert out["bannedUsers"] == []
    assert "u2" not in out["activeUsers"]
    assert "u2" not in out["dmIds"]
    assert "u2" not in out["assignments"]


def test_kick_removes_presence_and_assignment_only():
    out = kick_member(_state(), "u1", "u2")
    assert out["activeUsers"] == {"u1": "Ann"}
    assert out["assignments"] == {}
    assert out["bannedUsers"] == []


def test_campaign_roster_lists_each_identity_once():
    record = add_campaign_member([], "u1", "Ann", "dm", 10)
    assert record == {"uid": "u1", "name": "Ann", "role": "dm", "joined": 10}
    assert add_campaign_member([record], "u1", "Ann", "dm", 11) is None


def test_derived_first_member_stays_elevated_after_promoting_someone():
    state = _state(dmIds=[], activeUsers={"u1": "Ann", "u2": "Bo"})
    out = set_elevated(state, "u1", "u2", True)
    assert out["dmIds"] == ["u1", "u2"]
    assert is_elevated(out, "u1")
    assert is_elevated(out, "u2")


def test_demoting_someone_without_the_role_changes_nothing():
    state = _state(dmIds=[], activeUsers={"u1": "Ann", "u2": "Bo"})
    assert set_elevated(state, "u1", "u2", False) == state
    assert set_elevated(_state(), "u1", "u2", False)["dmIds"] == ["u1"]
