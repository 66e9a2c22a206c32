"""Tests for the active-prompt store and its cache."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from poiesis.core.errors import InvalidRequest, NotFound
from poiesis.core.prompts import ActivePromptCache, ActivePromptStore


def _active_rows(mock_db):
    return [r for r in mock_db.select("admin_prompts") if r["active"]]


class TestCreate:
    def test_create_inactive(self, prompt_store, mock_db):
        prompt = prompt_store.create("Be brief.", creator_id="admin-1")
        assert prompt.version == 1
        assert not prompt.active
        assert prompt.created_by == "admin-1"
        assert _active_rows(mock_db) == []

    def test_create_active_deactivates_others(self, prompt_store, mock_db):
        a = prompt_store.create("A", creator_id="admin-1", make_active=True)
        b = prompt_store.create("B", creator_id="admin-1", make_active=True)
        active = _active_rows(mock_db)
        assert [r["id"] for r in active] == [str(b.id)]
        assert prompt_store.get(str(a.id)).active is False
        assert prompt_store.get_active().text == "B"

    def test_create_strips_text(self, prompt_store):
        assert prompt_store.create("  hello  ", creator_id=None).text == "hello"

    def test_create_rejects_blank_text(self, prompt_store):
        with pytest.raises(InvalidRequest):
            prompt_store.create("   ", creator_id=None)


class TestUpdate:
    def test_text_update_bumps_version(self, prompt_store):
        prompt = prompt_store.create("v1", creator_id=None)
        updated = prompt_store.update(str(prompt.id), text="v2")
        assert updated.version == 2
        assert updated.text == "v2"
        assert prompt_store.update(str(prompt.id), text="v3").version == 3

    def test_active_only_update_keeps_version(self, prompt_store):
        prompt = prompt_store.create("v1", creator_id=None)
        updated = prompt_store.update(str(prompt.id), active=True)
        assert updated.version == 1
        assert updated.active

    def test_activate_deactivates_others(self, prompt_store, mock_db):
        a = prompt_store.create("A", creator_id=None, make_active=True)
        b = prompt_store.create("B", creator_id=None)
        prompt_store.update(str(b.id), active=True)
        assert [r["id"] for r in _active_rows(mock_db)] == [str(b.id)]
        assert not prompt_store.get(str(a.id)).active

    def test_deactivate_leaves_none_active(self, prompt_store, mock_db):
        a = prompt_store.create("A", creator_id=None, make_active=True)
        prompt_store.update(str(a.id), active=False)
        assert _active_rows(mock_db) == []
        assert prompt_store.get_active() is None

    def test_unknown_id(self, prompt_store):
        with pytest.raises(NotFound):
            prompt_store.update("00000000-0000-0000-0000-000000000000", text="x")

    def test_requires_a_field(self, prompt_store):
        prompt = prompt_store.create("A", creator_id=None)
        with pytest.raises(InvalidRequest, match="No update fields"):
            prompt_store.update(str(prompt.id))

    def test_rejects_blank_text(self, prompt_store):
        prompt = prompt_store.create("A", creator_id=None)
        with pytest.raises(InvalidRequest, match="cannot be empty"):
            prompt_store.update(str(prompt.id), text="  ")


class TestDelete:
    def test_delete_active_leaves_zero_active(self, prompt_store, mock_db):
        a = prompt_store.create("A", creator_id=None)
        b = prompt_store.create("B", creator_id=None, make_active=True)
        prompt_store.delete(str(b.id))
        assert _active_rows(mock_db) == []
        assert prompt_store.get(str(a.id)).active is False

    def test_delete_unknown(self, prompt_store):
        with pytest.raises(NotFound):
            prompt_store.delete("00000000-0000-0000-0000-000000000000")

    def test_list_newest_first(self, prompt_store):
        prompt_store.create("first", creator_id=None)
        prompt_store.create("second", creator_id=None)
        assert [p.text for p in prompt_store.list()] == ["second", "first"]


class TestGetActive:
    def test_most_recent_active_wins(self, prompt_store, mock_db):
        # Tolerate legacy data with more than one active row
        mock_db.insert("admin_prompts", {"text": "old", "active": True, "version": 1,
                                         "created_at": "2026-01-01T00:00:00+00:00"})
        mock_db.insert("admin_prompts", {"text": "new", "active": True, "version": 1,
                                         "created_at": "2026-02-01T00:00:00+00:00"})
        assert prompt_store.get_active().text == "new"


class TestCache:
    def test_loader_called_once(self):
        cache = ActivePromptCache()
        loader = MagicMock(return_value=None)
        cache.get(loader)
        cache.get(loader)
        assert loader.call_count == 1

    def test_invalidate_forces_reload(self):
        cache = ActivePromptCache()
        loader = MagicMock(side_effect=["a", "b"])
        assert cache.get(loader) == "a"
        cache.invalidate()
        assert cache.get(loader) == "b"

    def test_loader_error_not_cached(self):
        cache = ActivePromptCache()
        loader = MagicMock(side_effect=[RuntimeError("db down"), "ok"])
        with pytest.raises(RuntimeError):
            cache.get(loader)
        assert cache.get(loader) == "ok"

    def test_load_racing_invalidate_is_discarded(self):
        cache = ActivePromptCache()

        def loader():
            cache.invalidate()
            return "stale"

        assert cache.get(loader) == "stale"
        assert cache.get(lambda: "fresh") == "fresh"

    def test_store_invalidates_on_activation(self, mock_db):
        cache = ActivePromptCache()
        store = ActivePromptStore(mock_db, cache)
        assert store.get_active_cached() is None
        store.create("A", creator_id=None, make_active=True)
        assert store.get_active_cached().text == "A"

    def test_inactive_create_keeps_cache(self, mock_db):
        cache = MagicMock(spec=ActivePromptCache)
        store = ActivePromptStore(mock_db, cache)
        store.create("draft", creator_id=None)
        cache.invalidate.assert_not_called()

    def test_text_only_update_keeps_cache(self, mock_db):
        cache = MagicMock(spec=ActivePromptCache)
        store = ActivePromptStore(mock_db, cache)
        prompt = store.create("draft", creator_id=None)
        store.update(str(prompt.id), text="edited")
        cache.invalidate.assert_not_called()

    def test_every_delete_invalidates(self, mock_db):
        cache = MagicMock(spec=ActivePromptCache)
        store = ActivePromptStore(mock_db, cache)
        prompt = store.create("draft", creator_id=None)
        store.delete(str(prompt.id))
        cache.invalidate.assert_called_once()

    def test_deactivation_seen_through_cache(self, mock_db):
        store = ActivePromptStore(mock_db, ActivePromptCache())
        prompt = store.create("A", creator_id=None, make_active=True)
        assert store.get_active_cached() is not None
        store.update(str(prompt.id), active=False)
        assert store.get_active_cached() is None

    def test_active_text_edit_seen_through_cache(self, mock_db):
        store = ActivePromptStore(mock_db, ActivePromptCache())
        prompt = store.create("before", creator_id=None, make_active=True)
        assert store.get_active_cached().text == "before"
        store.update(str(prompt.id), text="after")
        assert store.get_active_cached().text == "after"


class TestConcurrentActivation:
    def test_single_active_under_concurrent_creates(self, prompt_store, mock_db):
        barrier = threading.Barrier(8)

        def activate(n: int) -> None:
            barrier.wait()
            prompt_store.create(f"prompt {n}", creator_id=None, make_active=True)

        threads = [threading.Thread(target=activate, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(mock_db.select("admin_prompts")) == 8
        assert len(_active_rows(mock_db)) == 1

    def test_single_active_under_concurrent_updates(self, prompt_store, mock_db):
        ids = [str(prompt_store.create(f"p{n}", creator_id=None).id) for n in range(6)]
        barrier = threading.Barrier(len(ids))

        def activate(prompt_id: str) -> None:
            barrier.wait()
            prompt_store.update(prompt_id, active=True)

        threads = [threading.Thread(target=activate, args=(i,)) for i in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(_active_rows(mock_db)) == 1
