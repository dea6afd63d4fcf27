import os
import threading
from dataclasses import dataclass
from datetime import datetime

import pytest

from groktail.config import ParserConfig

TESTDATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "testdata")


@dataclass
class Metric:
    measurement: str
    fields: dict
    tags: dict
    timestamp: datetime


class Accumulator:
    """In-memory sink that records every metric and lets tests wait for them."""

    def __init__(self):
        self._cond = threading.Condition()
        self.metrics: list[Metric] = []

    def add_fields(self, measurement, fields, tags, timestamp):
        with self._cond:
            self.metrics.append(Metric(measurement, dict(fields), dict(tags), timestamp))
            self._cond.notify_all()

    def wait(self, n: int, timeout: float = 5.0) -> bool:
        """Block until at least *n* metrics arrived; False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: len(self.metrics) >= n, timeout=timeout)

    def count(self) -> int:
        with self._cond:
            return len(self.metrics)

    def has_tagged_fields(self, measurement: str, fields: dict, tags: dict) -> bool:
        with self._cond:
            return any(
                m.measurement == measurement and m.fields == fields and m.tags == tags
                for m in self.metrics
            )


@pytest.fixture
def acc():
    return Accumulator()


@pytest.fixture
def testdata():
    return TESTDATA_DIR


@pytest.fixture
def patterns_file():
    return os.path.join(TESTDATA_DIR, "test-patterns")


@pytest.fixture
def make_config(patterns_file):
    """Factory for a fast-polling config; keyword arguments override fields."""

    def _make(**overrides) -> ParserConfig:
        values = dict(
            from_beginning=True,
            patterns=("%{TEST_LOG_A}", "%{TEST_LOG_B}"),
            custom_pattern_files=(patterns_file,),
            watch_method="poll",
            poll_interval=0.05,
            rescan_interval=0,
            stop_timeout=2.0,
        )
        values.update(overrides)
        return ParserConfig(**values)

    return _make
