"""
Tests for the JSON-backed saved search and annotation store.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from eth_wallet_analytics.store import MAX_SAVED_SEARCHES, SCHEMA_VERSION, JsonStore, SearchStore


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "nested" / "store.json"


@pytest.fixture
def searches(store_path):
    return SearchStore(JsonStore(store_path))


# --- JsonStore ---


def test_missing_file_reads_empty(store_path):
    document = JsonStore(store_path).read()
    assert document == {"schema_version": SCHEMA_VERSION, "searches": [], "annotations": {}}


def test_write_stamps_schema_version(store_path):
    store = JsonStore(store_path)
    store.write({"searches": [], "annotations": {"0xabc": "note"}})

    on_disk = json.loads(store_path.read_text())
    assert on_disk["schema_version"] == SCHEMA_VERSION
    assert on_disk["annotations"] == {"0xabc": "note"}


def test_unversioned_list_is_migrated(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_text(json.dumps([{"id": "1", "address": "0xABC", "name": "old"}]))

    document = JsonStore(store_path).read()
    assert document["schema_version"] == SCHEMA_VERSION
    assert document["searches"][0]["name"] == "old"
    assert document["annotations"] == {}


def test_corrupt_file_reads_empty(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_text("{not json")
    assert JsonStore(store_path).read()["searches"] == []


def test_clear(store_path):
    store = JsonStore(store_path)
    store.write({"searches": []})
    store.clear()
    assert not store_path.exists()
    store.clear()


# --- Saved searches ---


def test_save_and_list(searches):
    saved = searches.save_search("0xABC", name="whale watch", tags=["whale"])
    results = searches.list_searches()

    assert [s.id for s in results] == [saved.id]
    assert results[0].address == "0xabc"
    assert results[0].tags == ["whale"]


def test_save_upserts_same_address_and_range(searches):
    first = searches.save_search("0xabc", name="one", start_block=1, end_block=10, notes="keep")
    second = searches.save_search("0xabc", name="two", start_block=1, end_block=10)
    searches.save_search("0xabc", name="other range", start_block=11)

    results = searches.list_searches()
    assert len(results) == 2
    assert second.id == first.id
    assert searches.get_search(first.id).name == "two"
    assert searches.get_search(first.id).notes == "keep"


def test_only_most_recent_kept(searches):
    for i in range(MAX_SAVED_SEARCHES + 5):
        searches.save_search(f"0x{i:040x}", name=f"search {i}")

    results = searches.list_searches()
    assert len(results) == MAX_SAVED_SEARCHES
    assert results[0].name == f"search {MAX_SAVED_SEARCHES + 4}"
    assert all(s.name != "search 0" for s in results)


def test_list_filters(searches):
    searches.save_search("0xaaa1", name="Exchange hot wallet", tags=["exchange"])
    searches.save_search("0xbbb2", name="Bridge", tags=["bridge", "exchange"])

    assert [s.name for s in searches.list_searches(address="AAA")] == ["Exchange hot wallet"]
    assert len(searches.list_searches(tag="exchange")) == 2
    assert [s.name for s in searches.list_searches(tag="bridge")] == ["Bridge"]
    assert [s.name for s in searches.list_searches(name="hot")] == ["Exchange hot wallet"]


def test_list_date_range(searches):
    searches.save_search("0xabc", name="now")
    now = datetime.now(timezone.utc)

    assert len(searches.list_searches(since=now - timedelta(minutes=5))) == 1
    assert searches.list_searches(until=now - timedelta(days=1)) == []


def test_delete(searches):
    saved = searches.save_search("0xabc")
    assert searches.delete_search(saved.id)
    assert not searches.delete_search(saved.id)
    assert searches.list_searches() == []


def test_tags_and_notes(searches):
    saved = searches.save_search("0xabc", tags=["a"])

    searches.add_tag(saved.id, "b")
    searches.add_tag(saved.id, "b")
    assert searches.get_search(saved.id).tags == ["a", "b"]

    searches.remove_tag(saved.id, "a")
    assert searches.get_search(saved.id).tags == ["b"]
    assert searches.all_tags() == ["b"]

    searches.update_notes(saved.id, "suspicious")
    assert searches.get_search(saved.id).notes == "suspicious"


def test_update_unknown_search_returns_none(searches):
    assert searches.add_tag("missing", "x") is None


# --- Annotations ---


def test_annotations(searches):
    searches.save_annotation("0xABC", "cold wallet")
    assert searches.get_annotations() == {"0xabc": "cold wallet"}

    searches.save_annotation("0xabc", "")
    assert searches.get_annotations() == {}


def test_annotations_survive_search_writes(searches):
    searches.save_annotation("0xabc", "cold wallet")
    searches.save_search("0xdef")
    assert searches.get_annotations() == {"0xabc": "cold wallet"}
