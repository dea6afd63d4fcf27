"""Thread-safe diagnostic counters for the parser supervisor."""

import threading
import time
from collections import defaultdict


class ParserStats:
    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._pattern_matches: dict[str, int] = defaultdict(int)
        self._start_time = time.monotonic()

    def increment(self, name: str, amount: int = 1):
        with self._lock:
            self._counters[name] += amount

    def record_match(self, pattern: str):
        """Count a matched line and attribute it to the pattern that won."""
        with self._lock:
            self._counters["lines_matched"] += 1
            self._pattern_matches[pattern] += 1

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all counters."""
        with self._lock:
            counters = dict(self._counters)
            matches = dict(self._pattern_matches)
            elapsed = time.monotonic() - self._start_time

        return {
            "lines_read": counters.get("lines_read", 0),
            "lines_matched": counters.get("lines_matched", 0),
            "lines_skipped": counters.get("lines_skipped", 0),
            "files_opened": counters.get("files_opened", 0),
            "files_closed": counters.get("files_closed", 0),
            "read_errors": counters.get("read_errors", 0),
            "sink_errors": counters.get("sink_errors", 0),
            "pattern_matches": matches,
            "elapsed_seconds": round(elapsed, 2),
        }
