"""Tests for capture name parsing and completion tracking."""
import itertools
import threading

import pytest

from ucx_sync.captures import (
    CaptureCompletionTracker,
    extract_capture_key,
    parse_capture_name,
)
from ucx_sync.registry import SourceKey

PROD = "Lvl0X-00042-Test1-00-00-AA66B5AD_9209_4D88_A41B_DFFD3CD97D40.raw"
TEST = "Lvl0X-00042-T-Test1-00-00-AA66B5AD_9209_4D88_A41B_DFFD3CD97D40.raw"

WU01 = SourceKey("WU01", "E$")
WU02 = SourceKey("WU02", "E$")
WU03 = SourceKey("WU03", "E$")


class TestParseCaptureName:
    def test_production_capture(self):
        info = parse_capture_name(PROD)
        assert info is not None
        assert info.level == "Lvl0X"
        assert info.capture_id == "00042"
        assert info.is_test is False
        assert info.project == "Test1"
        assert info.key == "00042"

    def test_test_capture(self):
        info = parse_capture_name(TEST)
        assert info.is_test is True
        assert info.project == "Test1"
        assert info.key == "T-00042"

    def test_case_insensitive(self):
        assert extract_capture_key(PROD.lower()) == "00042"

    @pytest.mark.parametrize("name", [
        "readme.txt",
        "Lvl0X-00042-Test1-00-00-AA66.tif",
        "Lvl0X-abc-Test1-00-00-AA66.raw",
        "prefix-Lvl0X-00042-Test1-00-00-AA66.raw",
        "Lvl0X-00042-Test1-00-00-XYZ.raw",
    ])
    def test_non_capture_names(self, name):
        assert parse_capture_name(name) is None
        assert extract_capture_key(name) is None


class TestCaptureCompletionTracker:
    def test_completes_once_all_sources_delivered(self):
        tracker = CaptureCompletionTracker(expected_sources=2)

        assert tracker.on_file_copied(PROD, WU01) is None
        assert "00042" in tracker
        assert tracker.delivered("00042") == {WU01}

        event = tracker.on_file_copied(PROD, WU02)
        assert event is not None
        assert event.key == "00042"
        assert event.sources == 2
        assert event.total_completed == 1
        assert "Capture #00042" in event.describe()
        assert tracker.is_complete("00042")
        assert "00042" not in tracker
        assert tracker.in_flight == 0

    @pytest.mark.parametrize("order", list(itertools.permutations([WU01, WU02, WU03])))
    def test_arrival_order_does_not_matter(self, order):
        tracker = CaptureCompletionTracker(expected_sources=3)
        events = [tracker.on_file_copied(PROD, source) for source in order]
        assert events[:2] == [None, None]
        assert events[2] is not None
        assert tracker.completed_count == 1
        assert tracker.in_flight == 0

    def test_concurrent_deliveries_complete_once(self):
        sources = [SourceKey(f"WU{n:02d}", share) for n in range(1, 15) for share in ("E$", "F$")]
        tracker = CaptureCompletionTracker(expected_sources=len(sources))
        announced = []
        tracker.add_listener(announced.append)
        barrier = threading.Barrier(len(sources))
        results = []
        results_lock = threading.Lock()

        def deliver(source):
            barrier.wait(5)
            event = tracker.on_file_copied(PROD, source)
            with results_lock:
                results.append(event)

        threads = [threading.Thread(target=deliver, args=(s,)) for s in sources]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert len(results) == len(sources)
        assert len([e for e in results if e is not None]) == 1
        assert len(announced) == 1
        assert tracker.completed_count == 1
        assert tracker.in_flight == 0

    def test_duplicate_delivery_from_same_source(self):
        tracker = CaptureCompletionTracker(expected_sources=2)
        tracker.on_file_copied(PROD, WU01)
        assert tracker.on_file_copied(PROD, WU01) is None
        assert not tracker.is_complete("00042")

    def test_late_duplicates_do_not_reannounce(self):
        tracker = CaptureCompletionTracker(expected_sources=2)
        tracker.on_file_copied(PROD, WU01)
        tracker.on_file_copied(PROD, WU02)
        assert tracker.on_file_copied(PROD, WU03) is None
        assert tracker.on_file_copied(PROD, WU01) is None
        assert tracker.completed_count == 1
        assert tracker.in_flight == 0

    def test_test_and_production_counted_separately(self):
        tracker = CaptureCompletionTracker(expected_sources=1)
        prod = tracker.on_file_copied(PROD, WU01)
        test = tracker.on_file_copied(TEST, WU01)
        assert prod.key == "00042"
        assert test.key == "T-00042"
        assert test.is_test
        assert tracker.completed_count == 1
        assert tracker.completed_test_count == 1
        assert tracker.last_capture == "00042"
        assert tracker.last_test_capture == "00042"

    def test_non_capture_files_ignored(self):
        tracker = CaptureCompletionTracker(expected_sources=1)
        assert tracker.on_file_copied("notes.txt", WU01) is None
        assert tracker.in_flight == 0

    def test_listeners_notified_and_isolated(self):
        tracker = CaptureCompletionTracker(expected_sources=1)
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        tracker.add_listener(broken)
        tracker.add_listener(seen.append)
        event = tracker.on_file_copied(PROD, WU01)
        assert seen == [event]

    def test_history_is_bounded(self):
        tracker = CaptureCompletionTracker(expected_sources=1, history=2)
        for capture in ("00001", "00002", "00003"):
            tracker.on_file_copied(PROD.replace("00042", capture), WU01)
        assert tracker.is_complete("00003")
        assert tracker.is_complete("00002")
        assert not tracker.is_complete("00001")
        assert tracker.completed_count == 3

    def test_requires_positive_quorum(self):
        with pytest.raises(ValueError):
            CaptureCompletionTracker(expected_sources=0)
