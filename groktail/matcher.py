"""Grok matcher: tries compiled patterns in order and builds typed records.

The first pattern whose regex matches and whose captures all convert wins.
A capture that fails conversion (``%{WORD:x:int}`` against ``abc``) makes
that pattern a non-match for the line; later patterns are still tried.
"""

import logging
import re
from datetime import datetime, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from dateutil import parser as dtparser
from dateutil import tz

from groktail.errors import ConfigError, ConversionError
from groktail.models import Capture, CompiledPattern, MatchResult, Role, SemanticType

logger = logging.getLogger(__name__)

DEFAULT_MEASUREMENT = "logparser_grok"

# Layout sentinels for timestamps strptime cannot handle directly.
ISO8601 = "@iso8601"
EPOCH = "@epoch"
EPOCH_MILLI = "@epochmilli"
EPOCH_NANO = "@epochnano"
GUESS = "@guess"
SYSLOG = "@syslog"

TIMESTAMP_LAYOUTS = {
    "ansic": "%a %b %d %H:%M:%S %Y",
    "unix": "%a %b %d %H:%M:%S %Z %Y",
    "ruby": "%a %b %d %H:%M:%S %z %Y",
    "rfc822": "%d %b %y %H:%M %Z",
    "rfc822z": "%d %b %y %H:%M %z",
    "rfc850": "%A, %d-%b-%y %H:%M:%S %Z",
    "rfc1123": "%a, %d %b %Y %H:%M:%S %Z",
    "rfc1123z": "%a, %d %b %Y %H:%M:%S %z",
    "httpd": "%d/%b/%Y:%H:%M:%S %z",
    "rfc3339": ISO8601,
    "rfc3339nano": ISO8601,
    "syslog": SYSLOG,
    "epoch": EPOCH,
    "epochmilli": EPOCH_MILLI,
    "epochnano": EPOCH_NANO,
}

_EPOCH_DIVISORS = {EPOCH: 1, EPOCH_MILLI: 1_000, EPOCH_NANO: 1_000_000_000}

_INT_RE = re.compile(r"[+-]?[0-9]+")

_BOOL_VALUES = {
    "1": True, "t": True, "T": True, "true": True, "TRUE": True, "True": True,
    "0": False, "f": False, "F": False, "false": False, "FALSE": False, "False": False,
}

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART_RE = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")


def resolve_timezone(name: str) -> tzinfo:
    """Map a timezone option to a tzinfo: "" / "UTC", "Local", or an IANA name."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    if name.lower() == "local":
        return tz.tzlocal()
    zone = tz.gettz(name)
    if zone is None:
        raise ConfigError(f"unknown timezone: {name!r}")
    return zone


def parse_duration(text: str) -> int:
    """Convert a duration such as ``5.432µs`` or ``1h2m3s`` to integer nanoseconds."""
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        raise ValueError("empty duration")

    total = Decimal(0)
    pos = 0
    while pos < len(text):
        m = _DURATION_PART_RE.match(text, pos)
        if not m:
            raise ValueError(f"invalid duration {text!r}")
        total += Decimal(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    return sign * int(total)


def parse_timestamp(raw: str, layout: str, zone: tzinfo) -> datetime:
    """Parse *raw* with *layout*; naive results are placed in *zone*."""
    try:
        if layout in _EPOCH_DIVISORS:
            seconds = Decimal(raw) / _EPOCH_DIVISORS[layout]
            return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
        if layout == ISO8601:
            dt = datetime.fromisoformat(raw)
        elif layout == GUESS:
            dt = dtparser.parse(raw)
        elif layout == SYSLOG:
            # No year in syslog stamps: assume the current one.
            year = datetime.now(zone).year
            dt = datetime.strptime(f"{year} {raw}", "%Y %b %d %H:%M:%S")
        else:
            dt = datetime.strptime(raw, layout)
    except (ValueError, OverflowError, InvalidOperation) as e:
        raise ConversionError(f"cannot parse timestamp {raw!r}: {e}") from e

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)
    return dt


def convert(raw: str, capture: Capture) -> Any:
    """Convert one captured substring according to the capture's semantic type."""
    kind = capture.type
    try:
        if kind is SemanticType.INT:
            if not _INT_RE.fullmatch(raw):
                raise ValueError("not an integer")
            return int(raw)
        if kind is SemanticType.FLOAT:
            return float(raw)
        if kind is SemanticType.BOOL:
            return _BOOL_VALUES[raw]
        if kind is SemanticType.DURATION:
            return parse_duration(raw)
    except (ValueError, KeyError) as e:
        raise ConversionError(
            f"cannot convert {raw!r} to {kind.value} for capture {capture.name!r}"
        ) from e
    return raw.strip('"')


class GrokMatcher:
    """Matches lines against an immutable, ordered set of compiled patterns."""

    def __init__(self, patterns: Iterable[CompiledPattern],
                 measurement: str = DEFAULT_MEASUREMENT,
                 timezone_name: str = "", full_line_match: bool = False):
        self._patterns = tuple(patterns)
        self._measurement = measurement or DEFAULT_MEASUREMENT
        self._zone = resolve_timezone(timezone_name)
        self._full_line_match = full_line_match

    @property
    def patterns(self) -> tuple[CompiledPattern, ...]:
        return self._patterns

    def match(self, line: str, path: str) -> MatchResult | None:
        """Return a record for the first pattern that fully succeeds, else None."""
        for pattern in self._patterns:
            if self._full_line_match:
                m = pattern.regex.fullmatch(line)
            else:
                m = pattern.regex.search(line)
            if m is None:
                continue
            try:
                result = self._build(pattern, m, path)
            except ConversionError as e:
                logger.debug("Pattern %s matched but was rejected: %s", pattern.name, e)
                continue
            if result is not None:
                return result
        return None

    def _build(self, pattern: CompiledPattern, m: re.Match, path: str) -> MatchResult | None:
        fields: dict[str, Any] = {}
        tags: dict[str, str] = {}
        measurement = self._measurement
        timestamp = None

        for capture in pattern.captures:
            raw = m.group(capture.group)
            if not raw or capture.role is Role.IGNORED:
                continue
            if capture.role is Role.TIMESTAMP:
                timestamp = parse_timestamp(raw, capture.layout or GUESS, self._zone)
            elif capture.role is Role.TAG:
                tags[capture.name] = raw
            elif capture.role is Role.MEASUREMENT:
                measurement = raw
            else:
                fields[capture.name] = convert(raw, capture)

        if not fields:
            logger.debug("Pattern %s matched but produced no fields", pattern.name)
            return None

        tags["path"] = path
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        return MatchResult(
            measurement=measurement,
            fields=fields,
            tags=tags,
            timestamp=timestamp,
            pattern=pattern.name,
        )
