"""File discovery: glob validation and expansion, plus filesystem event watching."""

import glob
import logging
import os
from typing import Callable, Iterable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from groktail.errors import ConfigError

logger = logging.getLogger(__name__)

WATCH_METHODS = ("inotify", "poll")

_MAGIC_CHARS = ("*", "?", "[")


def _has_magic(part: str) -> bool:
    return any(c in part for c in _MAGIC_CHARS)


def validate_glob(pattern: str):
    """Raise ConfigError for glob expressions that cannot be expanded sensibly."""
    if not pattern or not pattern.strip():
        raise ConfigError("empty glob expression in files")
    if "\x00" in pattern:
        raise ConfigError(f"glob contains a NUL byte: {pattern!r}")

    for part in pattern.split(os.sep):
        if "**" in part and part != "**":
            raise ConfigError(f"'**' must be a whole path component in glob {pattern!r}")

    i, n = 0, len(pattern)
    while i < n:
        if pattern[i] == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                raise ConfigError(f"unterminated '[' in glob {pattern!r}")
            i = j
        i += 1


def watch_root(pattern: str) -> tuple[str, bool]:
    """Return the deepest static directory of *pattern* and whether to watch it recursively."""
    parts = pattern.split(os.sep)
    static = []
    for part in parts[:-1]:
        if _has_magic(part):
            break
        static.append(part)
    base = os.sep.join(static) or (os.sep if pattern.startswith(os.sep) else ".")
    recursive = len(static) < len(parts) - 1
    return base, recursive


class _DiscoveryEventHandler(FileSystemEventHandler):
    """Routes watchdog events: new paths trigger a rescan, changes wake tailers."""

    def __init__(self, on_created: Callable[[str], None], on_changed: Callable[[str], None]):
        super().__init__()
        self._on_created = on_created
        self._on_changed = on_changed

    def on_created(self, event):
        self._on_created(os.path.abspath(event.src_path))

    def on_moved(self, event):
        self._on_changed(os.path.abspath(event.src_path))
        self._on_created(os.path.abspath(event.dest_path))

    def on_modified(self, event):
        if not event.is_directory:
            self._on_changed(os.path.abspath(event.src_path))

    def on_deleted(self, event):
        if not event.is_directory:
            self._on_changed(os.path.abspath(event.src_path))


class FileDiscovery:
    """Expands the configured globs into the set of files currently present.

    Globs matching nothing are not an error; paths created later are found by
    the next ``discover()`` call.
    """

    def __init__(self, globs: Iterable[str], watch_method: str = "inotify"):
        globs = list(globs)
        if not globs:
            raise ConfigError("no files configured")
        for pattern in globs:
            validate_glob(pattern)
        if watch_method not in WATCH_METHODS:
            raise ConfigError(f"unknown watch_method {watch_method!r}, expected one of {WATCH_METHODS}")

        self._globs = [os.path.expanduser(g) for g in globs]
        self._watch_method = watch_method
        self._observer = None

    @property
    def globs(self) -> list[str]:
        return list(self._globs)

    def discover(self) -> set[str]:
        found = set()
        for pattern in self._globs:
            for match in glob.glob(pattern, recursive=True):
                if os.path.isfile(match):
                    found.add(os.path.abspath(match))
        return found

    def watch(self, on_created: Callable[[str], None], on_changed: Callable[[str], None]):
        """Start a watchdog observer on the static directory of every glob."""
        if self._observer is not None:
            return
        handler = _DiscoveryEventHandler(on_created, on_changed)
        observer = PollingObserver() if self._watch_method == "poll" else Observer()

        scheduled: dict[str, bool] = {}
        for pattern in self._globs:
            base, recursive = watch_root(pattern)
            scheduled[base] = scheduled.get(base, False) or recursive

        watching = 0
        for base, recursive in sorted(scheduled.items()):
            if not os.path.isdir(base):
                logger.info("Directory %s does not exist yet, relying on rescans", base)
                continue
            observer.schedule(handler, base, recursive=recursive)
            logger.info("Watching directory: %s (recursive=%s)", base, recursive)
            watching += 1

        if not watching:
            return
        observer.start()
        self._observer = observer

    def unwatch(self, timeout: float = 5.0) -> bool:
        """Stop the observer. Returns False if its thread outlived *timeout*."""
        observer, self._observer = self._observer, None
        if observer is None:
            return True
        observer.stop()
        observer.join(timeout=timeout)
        return not observer.is_alive()
