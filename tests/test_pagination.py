from __future__ import annotations

import logging

from feedsync.domain.models import Page
from feedsync.domain.pagination import (
    append_page,
    extract_items,
    has_more,
    merge_pages,
    page_from_payload,
    replace_with_page,
    resolve_has_more,
)


def ids(collection) -> list[str]:
    return [item["id"] for item in collection]


def test_append_page_keeps_first_seen_order_and_updates_duplicates_in_place():
    existing = [{"id": "a", "v": 1}, {"id": "b", "v": 1}, {"id": "c", "v": 1}]
    page = Page(items=({"id": "c", "v": 2}, {"id": "d", "v": 2}), page_index=2)

    merged = append_page(existing, page)

    assert ids(merged) == ["a", "b", "c", "d"]
    assert merged[2] == {"id": "c", "v": 2}


def test_append_page_ids_are_unique_for_overlapping_pages():
    page1 = Page(items=tuple({"id": str(i)} for i in range(10)), page_index=1)
    page2 = Page(items=tuple({"id": str(i)} for i in range(5, 15)), page_index=2)

    merged = append_page(append_page((), page1), page2)

    assert len(merged) == 15
    assert len(set(ids(merged))) == 15


def test_append_empty_page_leaves_collection_unchanged():
    existing = ({"id": "a"}, {"id": "b"})

    merged = append_page(existing, Page(items=(), page_index=3))

    assert merged == existing


def test_replace_with_page_drops_previous_collection():
    page = Page(items=({"id": "x"}, {"id": "y"}), page_index=1)

    assert ids(replace_with_page(page)) == ["x", "y"]


def test_entities_without_id_are_dropped(caplog):
    page = Page(items=({"id": "a"}, {"title": "no id"}, "not-an-object", {"id": None}, {"id": "b"}), page_index=1)

    with caplog.at_level(logging.DEBUG, logger="feedsync.domain.pagination"):
        merged = append_page((), page)

    assert ids(merged) == ["a", "b"]
    assert "Dropped 3 entities" in caplog.text


def test_custom_id_field_and_integer_ids():
    page = Page(items=({"_id": 1, "n": 1}, {"_id": "1", "n": 2}, {"_id": 2}), page_index=1)

    merged = append_page((), page, id_field="_id")

    assert [item["_id"] for item in merged] == ["1", 2]
    assert merged[0]["n"] == 2


def test_merge_pages_orders_by_page_index():
    p1 = Page(items=({"id": "a"},), page_index=1)
    p2 = Page(items=({"id": "b"},), page_index=2)

    assert ids(merge_pages([p2, p1])) == ["a", "b"]


def test_has_more_is_true_only_for_full_page():
    full = Page(items=tuple({"id": str(i)} for i in range(10)))
    partial = Page(items=tuple({"id": str(i)} for i in range(7)))

    assert has_more(full, 10) is True
    assert has_more(partial, 10) is False


def test_resolve_has_more_prefers_server_hints():
    items = tuple({"id": str(i)} for i in range(10))
    page = Page(items=items, page_index=1)

    assert resolve_has_more({"posts": list(items), "pagination": {"hasNextPage": False}}, page, 10) is False
    assert resolve_has_more({"posts": list(items[:3]), "pagination": {"hasNextPage": True}}, Page(items[:3]), 10) is True
    assert resolve_has_more({"items": list(items), "total": 10}, page, 10) is False
    assert resolve_has_more({"items": list(items), "total": 25}, page, 10) is True
    assert resolve_has_more(list(items), page, 10) is True


def test_resolve_has_more_is_false_for_empty_page():
    assert resolve_has_more({"posts": [], "pagination": {"hasNextPage": True}}, Page(items=()), 10) is False


def test_extract_items_supports_known_shapes():
    assert extract_items([{"id": 1}]) == [{"id": 1}]
    assert extract_items({"posts": [{"id": 2}]}) == [{"id": 2}]
    assert extract_items({"items": [{"id": 3}]}) == [{"id": 3}]
    assert extract_items({"result": [{"id": 4}]}) == [{"id": 4}]


def test_extract_items_malformed_payload_yields_empty_list(caplog):
    with caplog.at_level(logging.WARNING, logger="feedsync.domain.pagination"):
        assert extract_items({"message": "oops"}) == []
        assert extract_items("text") == []

    assert "Malformed payload" in caplog.text


def test_page_from_payload_sets_index():
    page = page_from_payload({"posts": [{"id": "a"}]}, 4)

    assert page.page_index == 4
    assert page.items == ({"id": "a"},)
