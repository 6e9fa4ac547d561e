from __future__ import annotations

import pytest

from campaign_sync.core.errors import SanitizationError
from campaign_sync.core.normalize import UNSET, normalize_session_code, sanitize, split_path


def test_sanitize_replaces_unset_at_every_depth():
    state = {
        "hostId": "u1",
        "campaign": {"activeMap": {"url": UNSET, "tokens": [{"id": 1, "hp": UNSET}]}},
        "note": UNSET,
    }
    out = sanitize(state)
    assert out == {
        "hostId": "u1",
        "campaign": {"activeMap": {"url": None, "tokens": [{"id": 1, "hp": None}]}},
        "note": None,
    }


def test_sanitize_is_idempotent():
    state = {"a": UNSET, "b": [1, 2.5, (3, UNSET)], "c": {"d": float("nan")}}
    once = sanitize(state)
    assert sanitize(once) == once
    assert once == {"a": None, "b": [1, 2.5, [3, None]], "c": {"d": None}}


def test_sanitize_returns_detached_copy():
    tokens = [{"id": "t1"}]
    out = sanitize({"tokens": tokens})
    out["tokens"][0]["id"] = "changed"
    assert tokens == [{"id": "t1"}]


def test_sanitize_rejects_circular_structure():
    state: dict = {"campaign": {}}
    state["campaign"]["self"] = state
    with pytest.raises(SanitizationError):
        sanitize(state)


def test_sanitize_allows_shared_non_circular_references():
    shared = {"x": 1}
    assert sanitize({"a": shared, "b": shared}) == {"a": {"x": 1}, "b": {"x": 1}}


def test_sanitize_rejects_foreign_values():
    with pytest.raises(SanitizationError):
        sanitize({"when": object()})
    with pytest.raises(SanitizationError):
        sanitize({1: "numeric key"})


def test_session_code_and_paths():
    assert normalize_session_code("  ab c-12! ") == "ABC-12"
    assert split_path("campaigns/ABC") == ("campaigns", "ABC")
    assert split_path("campaigns/ABC/players/7") == ("campaigns/ABC/players", "7")
    with pytest.raises(ValueError):
        split_path("campaigns/ABC/players")
