"""ParserSupervisor: validates configuration and runs one tailing thread per file.

Lifecycle: CREATED -> VALIDATING -> RUNNING -> STOPPING -> STOPPED, with
FAILED as the terminal state of a start() that raised.
"""

import enum
import logging
import os
import threading

from groktail.config import ParserConfig
from groktail.discovery import FileDiscovery
from groktail.errors import ConfigError
from groktail.matcher import GrokMatcher
from groktail.patterns import PatternLibrary
from groktail.sink import Sink
from groktail.stats import ParserStats
from groktail.tailer import Tailer

logger = logging.getLogger(__name__)


class State(enum.Enum):
    CREATED = "created"
    VALIDATING = "validating"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class ParserSupervisor:
    def __init__(self, config: ParserConfig, sink: Sink, debug: bool = False):
        self._config = config
        self._sink = sink
        self._debug = debug
        self._stats = ParserStats()
        self._state = State.CREATED
        self._state_lock = threading.Lock()

        self._discovery: FileDiscovery | None = None
        self._matcher: GrokMatcher | None = None

        self._tailers: dict[str, Tailer] = {}
        # path -> inode of a tailer that crashed; skipped until the file is replaced
        self._parked: dict[str, int] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._tailers_lock = threading.Lock()
        self._rescan_lock = threading.Lock()

        self._emit_lock = threading.Lock()
        self._accepting = False
        self._stop_event = threading.Event()
        self._rescan_thread: threading.Thread | None = None

    @property
    def state(self) -> State:
        return self._state

    @property
    def stats(self) -> ParserStats:
        return self._stats

    @property
    def matcher(self) -> GrokMatcher | None:
        return self._matcher

    def active_paths(self) -> set[str]:
        with self._tailers_lock:
            return set(self._tailers)

    def start(self):
        """Validate synchronously, then begin tailing. Raises ConfigError on bad config."""
        with self._state_lock:
            if self._state is not State.CREATED:
                raise RuntimeError(f"cannot start supervisor in state {self._state.value}")
            self._state = State.VALIDATING

        try:
            self._validate()
        except ConfigError as e:
            self._state = State.FAILED
            logger.error("Configuration error: %s", e)
            raise

        self._accepting = True
        self._state = State.RUNNING
        try:
            opened = self.rescan(from_beginning=self._config.from_beginning)
            self._discovery.watch(self._on_path_created, self._on_path_changed)
            if self._config.rescan_interval > 0:
                self._rescan_thread = threading.Thread(
                    target=self._rescan_loop, name="logparser-rescan", daemon=True,
                )
                self._rescan_thread.start()
        except Exception:
            logger.exception("Startup failed, stopping tailers")
            self.stop()
            self._state = State.FAILED
            raise
        logger.info("Log parser running: %d file(s), %d pattern(s)",
                    len(opened), len(self._matcher.patterns))

    def _validate(self):
        config = self._config
        discovery = FileDiscovery(config.files, config.watch_method)
        library = PatternLibrary.load(config.custom_pattern_files, config.custom_patterns)
        compiled = library.resolve(config.patterns)
        self._matcher = GrokMatcher(
            compiled,
            measurement=config.measurement_name,
            timezone_name=config.timezone,
            full_line_match=config.full_line_match,
        )
        self._discovery = discovery

    def rescan(self, from_beginning: bool | None = None) -> list[str]:
        """Open tailers for newly matched paths. Existing tailers are left alone."""
        if self._state is not State.RUNNING:
            return []
        if from_beginning is None:
            from_beginning = self._config.from_beginning

        opened = []
        with self._rescan_lock:
            for path in sorted(self._discovery.discover()):
                with self._tailers_lock:
                    if path in self._tailers or self._is_parked(path):
                        continue
                if self._open_tailer(path, from_beginning):
                    opened.append(path)
        return opened

    def _is_parked(self, path: str) -> bool:
        inode = self._parked.get(path)
        if inode is None:
            return False
        try:
            if os.stat(path).st_ino == inode:
                return True
        except OSError:
            pass
        del self._parked[path]
        return False

    def gather(self):
        """Scheduler hook: one rescan per gather cycle."""
        self.rescan()

    def _open_tailer(self, path: str, from_beginning: bool) -> bool:
        config = self._config
        tailer = Tailer(
            path,
            from_beginning=from_beginning,
            poll_interval=config.poll_interval,
            read_retries=config.read_retries,
            stats=self._stats,
        )
        try:
            tailer.open()
        except OSError as e:
            logger.warning("Cannot open %s: %s", path, e)
            return False

        thread = threading.Thread(
            target=self._run_tailer, args=(tailer,), name=f"tail:{path}", daemon=True,
        )
        with self._tailers_lock:
            if self._stop_event.is_set():
                tailer.close()
                return False
            self._tailers[path] = tailer
            self._threads[path] = thread
        thread.start()
        return True

    def _run_tailer(self, tailer: Tailer):
        try:
            for line in tailer.lines():
                self._process_line(line, tailer.path)
        except Exception:
            logger.exception("Tailer for %s failed, not reopening it until the file is replaced",
                             tailer.path)
            with self._tailers_lock:
                self._parked[tailer.path] = tailer.inode
            return
        finally:
            with self._tailers_lock:
                if self._tailers.get(tailer.path) is tailer:
                    del self._tailers[tailer.path]
                    self._threads.pop(tailer.path, None)
            logger.debug("Stopped tailing %s", tailer.path)

        # The file went away on its own: pick up a replacement right away.
        if not tailer.closed and not self._stop_event.is_set():
            self.rescan()

    def _process_line(self, line: str, path: str):
        self._stats.increment("lines_read")
        result = self._matcher.match(line, path)
        if result is None:
            self._stats.increment("lines_skipped")
            if self._debug:
                logger.debug("Grok no match found for %s: %r", path, line)
            return

        with self._emit_lock:
            if not self._accepting:
                return
            try:
                self._sink.add_fields(result.measurement, result.fields, result.tags,
                                      result.timestamp)
            except Exception as e:
                self._stats.increment("sink_errors")
                logger.warning("Sink rejected record from %s: %s", path, e)
                return
        self._stats.record_match(result.pattern)

    def _on_path_created(self, path: str):
        self.rescan()

    def _on_path_changed(self, path: str):
        with self._tailers_lock:
            tailer = self._tailers.get(path)
        if tailer is not None:
            tailer.notify()

    def _rescan_loop(self):
        while not self._stop_event.wait(self._config.rescan_interval):
            try:
                self.rescan()
            except Exception:
                logger.exception("Rescan failed")

    def stop(self, timeout: float | None = None):
        """Stop all tailing and join every thread. A second call is a no-op."""
        with self._state_lock:
            if self._state in (State.STOPPING, State.STOPPED, State.FAILED):
                return
            if self._state is State.CREATED:
                self._state = State.STOPPED
                return
            self._state = State.STOPPING

        if timeout is None:
            timeout = self._config.stop_timeout

        stragglers = []
        if self._emit_lock.acquire(timeout=timeout):
            self._accepting = False
            self._emit_lock.release()
        else:
            # A sink call is stuck holding the lock; later emitters still see the flag.
            self._accepting = False
            stragglers.append("sink call")
        self._stop_event.set()

        with self._tailers_lock:
            tailers = list(self._tailers.values())
            threads = list(self._threads.values())
        for tailer in tailers:
            tailer.close()

        if self._discovery is not None and not self._discovery.unwatch(timeout):
            stragglers.append("watchdog observer")
        if self._rescan_thread is not None:
            self._rescan_thread.join(timeout=timeout)
            if self._rescan_thread.is_alive():
                stragglers.append(self._rescan_thread.name)
        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                stragglers.append(thread.name)

        if stragglers:
            logger.warning("Threads still running after %.1fs: %s", timeout, ", ".join(stragglers))

        self._state = State.STOPPED
        logger.info("Log parser stopped: %s", self._stats.snapshot())
