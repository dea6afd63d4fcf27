"""Data model shared by the pattern library, matcher, tailers, and supervisor."""

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO


class SemanticType(enum.Enum):
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    BOOL = "bool"
    DURATION = "duration"
    TIMESTAMP = "timestamp"
    DROP = "drop"


class Role(enum.Enum):
    FIELD = "field"
    TAG = "tag"
    TIMESTAMP = "timestamp"
    MEASUREMENT = "measurement"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Pattern:
    name: str
    template: str
    source: str = "builtin"   # "builtin", a file path, or "custom_patterns"


@dataclass(frozen=True)
class Capture:
    group: str                 # generated regex group name, e.g. "_g3"
    name: str                  # field/tag key as written in the pattern
    type: SemanticType
    role: Role
    layout: str | None = None  # timestamp layout, only for Role.TIMESTAMP


@dataclass(frozen=True)
class CompiledPattern:
    """One top-level pattern resolved into a single regex. Immutable once built."""

    name: str
    regex: re.Pattern
    captures: tuple[Capture, ...]


@dataclass
class MatchResult:
    measurement: str
    fields: dict[str, Any]
    tags: dict[str, str]
    timestamp: datetime
    pattern: str = ""


@dataclass
class FileCursor:
    path: str
    offset: int = 0
    handle: BinaryIO | None = None
    inode: int = 0
    last_activity: float = 0.0
    partial: bytes = field(default=b"", repr=False)
