import pytest

from tracker import SeenItemTracker, item_fingerprint, url_fingerprint


def test_url_fingerprint_ignores_case_and_whitespace():
    assert url_fingerprint("https://Example.com/Feed") == url_fingerprint("  https://example.com/feed ")
    assert url_fingerprint("https://example.com/a") != url_fingerprint("https://example.com/b")


def test_item_fingerprint_passes_integers_through():
    assert item_fingerprint(12345) == 12345
    assert item_fingerprint("urn:item:1") == item_fingerprint("urn:item:1")
    assert item_fingerprint("urn:item:1") != item_fingerprint("urn:item:2")
    assert isinstance(item_fingerprint("urn:item:1"), int)


def test_item_fingerprint_rejects_booleans():
    with pytest.raises(TypeError):
        item_fingerprint(True)


def test_first_cycle_then_commit():
    tracker = SeenItemTracker()
    url_fp = url_fingerprint("https://example.com/feed")

    is_first, previous = tracker.begin_cycle(url_fp)
    assert is_first is True
    assert previous == frozenset()
    assert url_fp not in tracker

    tracker.commit_cycle(url_fp, {1, 2})

    is_first, previous = tracker.begin_cycle(url_fp)
    assert is_first is False
    assert previous == {1, 2}
    assert tracker.was_seen(url_fp, 1)
    assert not tracker.was_seen(url_fp, 3)


def test_commit_replaces_previous_set():
    tracker = SeenItemTracker()
    url_fp = url_fingerprint("https://example.com/feed")
    tracker.commit_cycle(url_fp, {1, 2})

    tracker.commit_cycle(url_fp, {2, 3})

    assert tracker.seen_items(url_fp) == {2, 3}
    assert not tracker.was_seen(url_fp, 1)


def test_committed_empty_fetch_still_marks_url_seen():
    tracker = SeenItemTracker()
    url_fp = url_fingerprint("https://example.com/empty")

    tracker.commit_cycle(url_fp, [])

    assert tracker.begin_cycle(url_fp) == (False, frozenset())
    assert tracker.tracked_urls() == [url_fp]
    assert len(tracker) == 1


def test_previous_set_is_read_only():
    tracker = SeenItemTracker()
    url_fp = url_fingerprint("https://example.com/feed")
    processed = {1}
    tracker.commit_cycle(url_fp, processed)

    processed.add(2)
    _, previous = tracker.begin_cycle(url_fp)

    assert previous == {1}
    assert isinstance(previous, frozenset)
