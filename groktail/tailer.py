"""Tailer: owns one file's cursor and streams newly appended lines."""

import logging
import os
import threading
import time
from typing import Iterator

from groktail.models import FileCursor
from groktail.stats import ParserStats

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Tailer:
    """Reads complete lines from a single file as they are appended.

    The cursor and its handle belong to whichever thread iterates ``lines()``;
    other threads only call ``notify()`` and ``close()``.
    """

    def __init__(self, path: str, from_beginning: bool = False,
                 poll_interval: float = 0.25, read_retries: int = 3,
                 stats: ParserStats | None = None):
        self._cursor = FileCursor(path=path)
        self._from_beginning = from_beginning
        self._poll_interval = poll_interval
        self._read_retries = max(1, read_retries)
        self._stats = stats
        self._closed = threading.Event()
        self._wakeup = threading.Event()
        self._release_lock = threading.Lock()
        self._streaming = False
        self._degraded = False

    @property
    def path(self) -> str:
        return self._cursor.path

    @property
    def offset(self) -> int:
        return self._cursor.offset

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def inode(self) -> int:
        return self._cursor.inode

    @property
    def degraded(self) -> bool:
        return self._degraded

    def open(self):
        """Open the file and position the cursor at 0 or at end-of-file."""
        fh = open(self._cursor.path, "rb")
        try:
            st = os.fstat(fh.fileno())
            if self._from_beginning:
                offset = 0
            else:
                offset = fh.seek(0, os.SEEK_END)
        except OSError:
            fh.close()
            raise

        self._cursor.handle = fh
        self._cursor.inode = st.st_ino
        self._cursor.offset = offset
        self._cursor.last_activity = time.time()
        if self._stats:
            self._stats.increment("files_opened")
        logger.info("Tailing %s from offset %d", self._cursor.path, offset)

    def notify(self):
        """Wake the stream early, e.g. on a filesystem modify event."""
        self._wakeup.set()

    def close(self):
        """End the stream. The handle is released by the streaming thread."""
        self._closed.set()
        self._wakeup.set()
        if not self._streaming:
            self._release()

    def lines(self) -> Iterator[str]:
        """Yield complete lines until closed or until the file goes away."""
        self._streaming = True
        try:
            if self._closed.is_set():
                return
            if self._cursor.handle is None:
                self.open()
            while not self._closed.is_set():
                if self._degraded:
                    if not os.path.exists(self._cursor.path):
                        return
                    self._closed.wait(self._poll_interval)
                    continue

                chunk = self._read()
                if chunk:
                    yield from self._split(chunk)
                    continue

                if self._file_gone():
                    while not self._closed.is_set():
                        chunk = self._read()
                        if not chunk:
                            break
                        yield from self._split(chunk)
                    return

                self._wakeup.wait(self._poll_interval)
                self._wakeup.clear()
        finally:
            self._streaming = False
            self._release()

    def _read(self) -> bytes:
        cursor = self._cursor
        for attempt in range(1, self._read_retries + 1):
            try:
                data = cursor.handle.read(CHUNK_SIZE)
            except OSError as e:
                if self._stats:
                    self._stats.increment("read_errors")
                logger.warning("Read error on %s (attempt %d/%d): %s",
                               cursor.path, attempt, self._read_retries, e)
                if self._closed.wait(self._poll_interval * attempt):
                    return b""
                continue
            if data:
                cursor.offset += len(data)
                cursor.last_activity = time.time()
            return data

        logger.warning("Giving up on %s after %d failed reads, no more data will be read",
                       cursor.path, self._read_retries)
        self._degraded = True
        return b""

    def _split(self, chunk: bytes) -> Iterator[str]:
        data = self._cursor.partial + chunk
        *complete, self._cursor.partial = data.split(b"\n")
        for raw in complete:
            if self._closed.is_set():
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            if line.strip():
                yield line

    def _file_gone(self) -> bool:
        """True once the path was removed or replaced.

        A file truncated in place (same inode, size below our offset) is not
        gone: the cursor is rewound to 0 and tailing continues on the same handle.
        """
        path = self._cursor.path
        try:
            st = os.stat(path)
        except FileNotFoundError:
            logger.info("File removed: %s", path)
            return True
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return False

        if st.st_ino != self._cursor.inode:
            logger.info("File rotated (inode changed): %s", path)
            return True
        # Removed and recreated with a recycled inode number.
        if os.fstat(self._cursor.handle.fileno()).st_nlink == 0:
            logger.info("File replaced: %s", path)
            return True
        if st.st_size < self._cursor.offset:
            self._rewind()
        return False

    def _rewind(self):
        cursor = self._cursor
        logger.info("File truncated: %s (offset %d > size), reading from the start",
                    cursor.path, cursor.offset)
        cursor.handle.seek(0)
        cursor.offset = 0
        cursor.partial = b""

    def _release(self):
        with self._release_lock:
            self._release_locked()

    def _release_locked(self):
        cursor = self._cursor
        if cursor.handle is None:
            return
        if cursor.partial:
            logger.debug("Discarding incomplete last line of %s (%d bytes)",
                         cursor.path, len(cursor.partial))
            cursor.partial = b""
        try:
            cursor.handle.close()
        except OSError as e:
            logger.warning("Failed to close %s: %s", cursor.path, e)
        cursor.handle = None
        if self._stats:
            self._stats.increment("files_closed")
        logger.debug("Closed %s at offset %d", cursor.path, cursor.offset)
