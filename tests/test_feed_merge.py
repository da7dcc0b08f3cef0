"""Tests for the dedupe/merge step."""
import copy

import pytest

from feed_merge import (
    OLDEST,
    ORDER_TIME,
    admit_new,
    dedupe,
    field_text,
    identity,
    pubdate_timestamp,
    reconcile,
)


def item(key, date=None, **extra):
    e = {"guid": key, "title": f"title {key}"}
    if date:
        e["pubDate"] = date
    e.update(extra)
    return e


def guids(entries):
    return [e.get("guid") or e.get("link") for e in entries]


def test_identity_prefers_guid_then_link():
    assert identity({"guid": "g", "link": "l"}) == "g"
    assert identity({"guid": "  ", "link": "l"}) == "l"
    assert identity({"title": "no keys"}) is None


def test_pubdate_timestamp_missing_or_bad_is_oldest():
    assert pubdate_timestamp({}) == OLDEST
    assert pubdate_timestamp({"pubDate": "not a date at all"}) == OLDEST
    assert pubdate_timestamp({"pubDate": "2024-01-02"}) > pubdate_timestamp({"pubDate": "2024-01-01"})


def test_pubdate_timestamp_respects_timezone():
    a = pubdate_timestamp({"pubDate": "Tue, 02 Jan 2024 10:00:00 +0200"})
    b = pubdate_timestamp({"pubDate": "Tue, 02 Jan 2024 08:00:00 GMT"})
    assert a == b


def test_empty_fresh_returns_prior_unchanged():
    prior = [item("x"), item("y")]
    assert reconcile([], prior, max_items=100) == (prior, 0)


def test_all_duplicates_is_noop_even_if_prior_oversized():
    prior = [item(str(i)) for i in range(5)]
    merged, added = reconcile([item("3")], prior, max_items=2)
    assert added == 0
    assert merged == prior


def test_duplicate_keeps_prior_copy():
    prior = [item("b", "2024-01-01", description="old")]
    fresh = [item("a", "2024-01-02"), item("b", "2024-01-01", description="new")]
    merged, added = reconcile(fresh, prior, max_items=100)
    assert added == 1
    assert guids(merged) == ["a", "b"]
    assert merged[1]["description"] == "old"


def test_fresh_batch_is_deduped_first_occurrence_wins():
    fresh = [item("a", title="first"), item("b"), item("a", title="second")]
    merged, added = reconcile(fresh, [], max_items=10)
    assert added == 2
    assert guids(merged) == ["a", "b"]
    assert merged[0]["title"] == "first"


def test_entries_without_identity_are_always_new():
    anon = {"title": "no guid, no link"}
    prior = [dict(anon)]
    merged, added = reconcile([anon, dict(anon)], prior, max_items=10)
    assert added == 2
    assert len(merged) == 3


def test_link_used_when_guid_missing():
    prior = [{"link": "https://example.com/1"}]
    fresh = [{"link": "https://example.com/1", "title": "dup"}, {"link": "https://example.com/2"}]
    merged, added = reconcile(fresh, prior, max_items=10)
    assert added == 1
    assert guids(merged) == ["https://example.com/2", "https://example.com/1"]


def test_bootstrap_from_empty_cache():
    fresh = [item(str(i)) for i in range(150)]
    merged, added = reconcile(fresh, [], max_items=100)
    assert added == 150
    assert len(merged) == 100
    assert merged == fresh[:100]


def test_new_items_survive_truncation_before_prior():
    prior = [item(f"old{i}") for i in range(10)]
    fresh = [item(f"new{i}") for i in range(4)]
    merged, added = reconcile(fresh, prior, max_items=8)
    assert added == 4
    assert guids(merged) == [f"new{i}" for i in range(4)] + [f"old{i}" for i in range(4)]


@pytest.mark.parametrize("n_prior,n_fresh,cap", [(0, 0, 1), (3, 200, 100), (99, 5, 100), (500, 1, 7)])
def test_output_never_exceeds_cap(n_prior, n_fresh, cap):
    prior = [item(f"p{i}") for i in range(n_prior)]
    fresh = [item(f"f{i}") for i in range(n_fresh)]
    merged, added = reconcile(fresh, prior, max_items=cap)
    if added:
        assert len(merged) <= cap
    assert len(set(guids(merged))) == len(merged)


def test_inputs_not_mutated():
    prior = [item("b", "2024-01-01")]
    fresh = [item("a", "2024-01-02"), item("b")]
    prior_copy, fresh_copy = copy.deepcopy(prior), copy.deepcopy(fresh)
    reconcile(fresh, prior, max_items=1, order=ORDER_TIME)
    assert prior == prior_copy
    assert fresh == fresh_copy


def test_time_order_sorts_newest_first_undated_last():
    prior = [item("p1", "2024-03-01"), item("p2")]
    fresh = [item("f1", "2024-01-01"), item("f2", "2024-05-01")]
    merged, added = reconcile(fresh, prior, max_items=10, order=ORDER_TIME)
    assert added == 2
    assert guids(merged) == ["f2", "p1", "f1", "p2"]


def test_time_order_ties_put_new_before_old():
    prior = [item("old", "2024-01-01")]
    fresh = [item("new", "2024-01-01")]
    merged, _ = reconcile(fresh, prior, max_items=10, order=ORDER_TIME)
    assert guids(merged) == ["new", "old"]


def test_time_order_truncation_drops_oldest():
    prior = [item("p", "2023-01-01")]
    fresh = [item("a", "2024-01-01"), item("b", "2024-02-01")]
    merged, _ = reconcile(fresh, prior, max_items=2, order=ORDER_TIME)
    assert guids(merged) == ["b", "a"]


def test_invalid_arguments():
    with pytest.raises(ValueError):
        reconcile([item("a")], [], max_items=0)
    with pytest.raises(ValueError):
        reconcile([item("a")], [], order="random")


def test_admit_new_ignores_prior_without_identity():
    assert guids(admit_new([item("a")], [{"title": "anon"}])) == ["a"]


def test_field_text_unwraps_lists_and_attributed_values():
    assert field_text(["", "x", "y"]) == "x"
    assert field_text({"@isPermaLink": "false", "#text": " g "}) == "g"
    assert field_text({"@url": "https://e/x.mp3"}) == ""
    assert field_text(None) == ""


def test_repeated_guid_in_prior_uses_first_value():
    prior = [{"guid": ["x", "y"], "title": "twice"}]
    merged, added = reconcile([item("x"), item("y"), item("z")], prior, max_items=10)
    assert added == 2
    assert guids(merged) == ["y", "z", ["x", "y"]]


def test_guid_with_attributes_matches_plain_guid():
    prior = [{"guid": {"@isPermaLink": "false", "#text": "g1"}}]
    merged, added = reconcile([{"guid": "g1"}], prior, max_items=10)
    assert added == 0
    assert merged == prior


def test_duplicates_inside_prior_are_collapsed_on_write():
    prior = [item("p", description="first"), item("q"), item("p", description="second")]
    merged, added = reconcile([item("n")], prior, max_items=10)
    assert added == 1
    assert guids(merged) == ["n", "p", "q"]
    assert merged[1]["description"] == "first"


def test_dedupe_keeps_entries_without_identity():
    anon = {"title": "anon"}
    assert dedupe([anon, item("a"), anon, item("a")]) == [anon, item("a"), anon]
