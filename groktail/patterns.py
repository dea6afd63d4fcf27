"""Pattern library: loads named grok patterns and compiles top-level ones.

Templates reference other patterns as ``%{NAME}``, ``%{NAME:capture}`` or
``%{NAME:capture:modifier}``. Resolution substitutes references until only
regex text remains, using an explicit stack so deep or cyclic definitions
fail with a PatternError instead of exhausting the interpreter stack.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from groktail.builtin_patterns import DEFAULT_PATTERNS
from groktail.errors import ConfigError, PatternError, UnknownModifierError
from groktail.matcher import GUESS, TIMESTAMP_LAYOUTS
from groktail.models import Capture, CompiledPattern, Pattern, Role, SemanticType

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"[A-Za-z0-9_]+")
_REF_RE = re.compile(
    r"%\{(?P<name>[A-Za-z0-9_]+)"
    r"(?::(?P<capture>[^:}]+)(?::(?P<modifier>[^}]+))?)?\}"
)
# (?P<name>...) or (?<name>...), but not lookbehinds (?<= / (?<!
_RAW_GROUP_RE = re.compile(r"(?<!\\)\(\?P?<(?P<name>[A-Za-z_][A-Za-z0-9_]*)>")

_SIMPLE_MODIFIERS = {
    "": (SemanticType.STRING, Role.FIELD),
    "string": (SemanticType.STRING, Role.FIELD),
    "int": (SemanticType.INT, Role.FIELD),
    "float": (SemanticType.FLOAT, Role.FIELD),
    "bool": (SemanticType.BOOL, Role.FIELD),
    "duration": (SemanticType.DURATION, Role.FIELD),
    "tag": (SemanticType.STRING, Role.TAG),
    "drop": (SemanticType.DROP, Role.IGNORED),
    "measurement": (SemanticType.STRING, Role.MEASUREMENT),
}


def parse_modifier(modifier: str | None) -> tuple[SemanticType, Role, str | None]:
    """Map a capture modifier to (type, role, timestamp layout)."""
    modifier = (modifier or "").strip()
    if modifier in _SIMPLE_MODIFIERS:
        kind, role = _SIMPLE_MODIFIERS[modifier]
        return kind, role, None
    if modifier == "ts":
        return SemanticType.TIMESTAMP, Role.TIMESTAMP, GUESS
    if modifier.startswith("ts-"):
        layout = modifier[3:]
        if len(layout) >= 2 and layout[0] == layout[-1] == '"':
            return SemanticType.TIMESTAMP, Role.TIMESTAMP, layout[1:-1]
        if layout in TIMESTAMP_LAYOUTS:
            return SemanticType.TIMESTAMP, Role.TIMESTAMP, TIMESTAMP_LAYOUTS[layout]
    raise UnknownModifierError(f"unknown capture modifier {modifier!r}")


def _tokenize(template: str) -> Iterator[str | tuple[str, str | None, str | None]]:
    """Split a template into literal regex text and (name, capture, modifier) references."""
    pos = 0
    for m in _REF_RE.finditer(template):
        if m.start() > pos:
            yield template[pos:m.start()]
        yield m.group("name"), m.group("capture"), m.group("modifier")
        pos = m.end()
    if pos < len(template):
        yield template[pos:]


@dataclass
class _Frame:
    name: str | None
    pieces: Iterator
    group: str | None
    parts: list[str] = field(default_factory=list)


class PatternLibrary:
    """Named pattern definitions: built-ins plus custom files and inline text.

    A later definition of an existing name replaces it. Replacements that change
    the template are logged at WARNING so a custom file never shadows a built-in
    silently.
    """

    def __init__(self):
        self._patterns: dict[str, Pattern] = {}

    @classmethod
    def load(cls, custom_pattern_files: Iterable[str] = (),
             custom_patterns: str = "") -> "PatternLibrary":
        library = cls()
        library.add_text(DEFAULT_PATTERNS, source="builtin")
        for path in custom_pattern_files:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    text = f.read()
            except OSError as e:
                raise PatternError(f"cannot read pattern file {path}: {e}") from e
            library.add_text(text, source=path)
            logger.info("Loaded custom patterns from %s", path)
        if custom_patterns:
            library.add_text(custom_patterns, source="custom_patterns")
        return library

    def __contains__(self, name: str) -> bool:
        return name in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def get(self, name: str) -> Pattern | None:
        return self._patterns.get(name)

    def add_text(self, text: str, source: str):
        """Parse ``NAME template`` lines; blank lines and ``#`` comments are skipped."""
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(None, 1)
            if len(parts) != 2 or not _NAME_RE.fullmatch(parts[0]):
                raise PatternError(
                    f"{source}:{lineno}: expected 'NAME pattern', got {raw!r}"
                )
            self.add(Pattern(name=parts[0], template=parts[1], source=source))

    def add(self, pattern: Pattern):
        existing = self._patterns.get(pattern.name)
        if existing is not None and existing.template != pattern.template:
            logger.warning("Pattern %s from %s overrides the definition from %s",
                           pattern.name, pattern.source, existing.source)
        self._patterns[pattern.name] = pattern

    def resolve(self, entries: Iterable[str]) -> list[CompiledPattern]:
        """Compile each configured top-level pattern, in order.

        An entry is a bare name (``TEST_LOG_A``) or a template (``%{TEST_LOG_A}``).
        Undefined names, cycles and bad regex text raise PatternError. A pattern
        using an unknown modifier is logged and left out; if nothing usable
        remains, ConfigError is raised.
        """
        entries = list(entries)
        if not entries:
            raise ConfigError("no grok patterns configured")

        compiled = []
        for entry in entries:
            template = f"%{{{entry}}}" if _NAME_RE.fullmatch(entry) else entry
            try:
                compiled.append(self.compile(template, label=entry))
            except UnknownModifierError as e:
                logger.warning("Pattern %s is unusable and will never match: %s", entry, e)

        if not compiled:
            raise ConfigError(f"none of the configured patterns is usable: {entries}")
        return compiled

    def compile(self, template: str, label: str | None = None) -> CompiledPattern:
        label = label or template
        captures: list[Capture] = []
        stack = [_Frame(name=None, pieces=_tokenize(template), group=None)]
        regex_text = ""

        while stack:
            frame = stack[-1]
            piece = next(frame.pieces, None)

            if piece is None:
                stack.pop()
                fragment = "".join(frame.parts)
                if frame.group:
                    fragment = f"(?P<{frame.group}>{fragment})"
                elif frame.name:
                    fragment = f"(?:{fragment})"
                if stack:
                    stack[-1].parts.append(fragment)
                else:
                    regex_text = fragment
                continue

            if isinstance(piece, str):
                frame.parts.append(self._rename_raw_groups(piece, captures))
                continue

            name, capture_name, modifier = piece
            referrer = frame.name or label
            if name not in self._patterns:
                raise PatternError(
                    f"pattern {label}: undefined pattern %{{{name}}} referenced from {referrer}",
                    pattern_name=name,
                )
            active = [f.name for f in stack if f.name]
            if name in active:
                cycle = " -> ".join(active[active.index(name):] + [name])
                raise PatternError(f"pattern {label}: reference cycle {cycle}", pattern_name=name)

            group = None
            if capture_name:
                kind, role, layout = parse_modifier(modifier)
                if role is Role.TIMESTAMP and any(c.role is Role.TIMESTAMP for c in captures):
                    raise PatternError(
                        f"pattern {label}: only one timestamp capture is allowed per pattern",
                        pattern_name=label,
                    )
                group = f"_g{len(captures)}"
                captures.append(Capture(group, capture_name, kind, role, layout))

            stack.append(_Frame(name=name, pieces=_tokenize(self._patterns[name].template),
                                group=group))

        try:
            regex = re.compile(regex_text)
        except re.error as e:
            raise PatternError(f"pattern {label}: invalid regular expression: {e}",
                               pattern_name=label) from e
        return CompiledPattern(name=label, regex=regex, captures=tuple(captures))

    @staticmethod
    def _rename_raw_groups(text: str, captures: list[Capture]) -> str:
        """Turn inline named groups into generated groups captured as string fields."""

        def _replace(m: re.Match) -> str:
            group = f"_g{len(captures)}"
            captures.append(Capture(group, m.group("name"), SemanticType.STRING, Role.FIELD))
            return f"(?P<{group}>"

        return _RAW_GROUP_RE.sub(_replace, text)
