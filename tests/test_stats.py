"""Tests for the parser stats counters."""

import threading

from groktail.stats import ParserStats


class TestParserStats:
    def test_empty_snapshot(self):
        snap = ParserStats().snapshot()
        assert snap["lines_read"] == 0
        assert snap["lines_skipped"] == 0
        assert snap["pattern_matches"] == {}
        assert snap["elapsed_seconds"] >= 0

    def test_increment_and_record_match(self):
        stats = ParserStats()
        stats.increment("lines_read", 3)
        stats.increment("lines_skipped")
        stats.record_match("%{TEST_LOG_A}")
        stats.record_match("%{TEST_LOG_A}")

        snap = stats.snapshot()
        assert snap["lines_read"] == 3
        assert snap["lines_skipped"] == 1
        assert snap["lines_matched"] == 2
        assert snap["pattern_matches"] == {"%{TEST_LOG_A}": 2}

    def test_concurrent_increments(self):
        stats = ParserStats()

        def bump():
            for _ in range(1000):
                stats.increment("lines_read")

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert stats.get("lines_read") == 8000
