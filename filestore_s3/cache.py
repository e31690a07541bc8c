"""Read-through disk cache giving random access to sequential downloads."""

import hashlib
import io
import logging
import os
import threading
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Optional

from .errors import FileStoreError, NetworkError

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 256 * 1024


class _CacheEntry:
    """One cached file: a single producer appends, any number of readers wait on it."""

    def __init__(self, file_id: str, path: Path, total_size: int, done: bool = False):
        self.file_id = file_id
        self.path = path
        self.total_size = total_size
        self.written = total_size if done else 0
        self.done = done
        self.error: Optional[BaseException] = None
        self._cond = threading.Condition()

    def advance(self, n: int) -> None:
        with self._cond:
            self.written += n
            self._cond.notify_all()

    def finish(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            self.done = True
            self.error = error
            self._cond.notify_all()

    def wait_for(self, end: int) -> None:
        """Block until bytes [0, end) are on disk or the copy has ended."""
        with self._cond:
            self._cond.wait_for(lambda: self.written >= end or self.done)
            if self.written < end and self.error is None:
                raise NetworkError(
                    f"cached copy of {self.file_id} is short",
                    details={"file_id": self.file_id, "written": self.written},
                )
            if self.written < end and self.error is not None:
                raise FileStoreError(
                    f"cache fill failed for {self.file_id}",
                    details={"file_id": self.file_id},
                    cause=self.error,
                ) from self.error


class ReadThroughCache:
    """
    Disk cache keyed by file id.

    The first `open` for a file starts one background copy of its download
    stream into the cache directory and returns immediately; every reader,
    including that first one, is served from the local copy.
    """

    def __init__(self, directory):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._entries: Dict[str, _CacheEntry] = {}

    def _entry_path(self, file_id: str) -> Path:
        return self.directory / hashlib.sha1(file_id.encode("utf-8")).hexdigest()

    def open(
        self,
        file_id: str,
        total_size: int,
        opener: Callable[[], BinaryIO],
    ) -> "CachedReader":
        """Return a random-access reader for `file_id`, downloading it on first use."""
        with self._lock:
            entry = self._entries.get(file_id)
            if entry is None:
                path = self._entry_path(file_id)
                if path.exists() and path.stat().st_size == total_size:
                    logger.debug(f"Reusing cached copy of {file_id}")
                    entry = _CacheEntry(file_id, path, total_size, done=True)
                    self._entries[file_id] = entry
                    return CachedReader(entry)

                entry = _CacheEntry(file_id, path, total_size)
                self._entries[file_id] = entry
                sink = open(path, "wb")
            else:
                return CachedReader(entry)

        try:
            stream = opener()
        except BaseException as e:
            sink.close()
            self._evict(entry)
            entry.finish(e)
            raise

        reader = CachedReader(entry)
        thread = threading.Thread(
            target=self._fill,
            args=(entry, stream, sink),
            name=f"cache-fill-{file_id}",
            daemon=True,
        )
        thread.start()
        return reader

    def _fill(self, entry: _CacheEntry, stream: BinaryIO, sink: BinaryIO) -> None:
        error: Optional[BaseException] = None
        try:
            with sink, stream:
                while True:
                    data = stream.read(COPY_BUFFER_SIZE)
                    if not data:
                        break
                    sink.write(data)
                    sink.flush()
                    entry.advance(len(data))
            if entry.written < entry.total_size:
                error = NetworkError(
                    f"download of {entry.file_id} ended after {entry.written} "
                    f"of {entry.total_size} bytes"
                )
        except Exception as e:
            error = e

        if error is not None:
            logger.warning(f"Failed to copy {entry.file_id} to cache: {error}")
            self._evict(entry)
        else:
            logger.debug(f"Copied {entry.file_id} to cache ({entry.written} bytes)")
        entry.finish(error)

    def _evict(self, entry: _CacheEntry) -> None:
        with self._lock:
            if self._entries.get(entry.file_id) is not entry:
                return
            del self._entries[entry.file_id]
            try:
                entry.path.unlink()
            except FileNotFoundError:
                pass


class CachedReader(io.RawIOBase):
    """Seekable reader over a cache entry that may still be filling."""

    def __init__(self, entry: _CacheEntry):
        self._entry = entry
        self._fh = open(entry.path, "rb")
        self._pos = 0
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return self._entry.total_size

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to `size` bytes at `offset`. Returns b"" at or past end of file."""
        if offset < 0:
            raise ValueError("negative offset")
        if offset >= self._entry.total_size or size == 0:
            return b""
        end = self._entry.total_size if size < 0 else min(offset + size, self._entry.total_size)
        self._entry.wait_for(end)
        with self._lock:
            self._fh.seek(offset)
            return self._fh.read(end - offset)

    def readinto(self, b) -> int:
        data = self.read_at(len(b), self._pos)
        n = len(data)
        b[:n] = data
        self._pos += n
        return n

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            pos = offset
        elif whence == os.SEEK_CUR:
            pos = self._pos + offset
        elif whence == os.SEEK_END:
            pos = self._entry.total_size + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if pos < 0:
            raise ValueError("negative seek position")
        self._pos = pos
        return pos

    def tell(self) -> int:
        return self._pos

    def close(self) -> None:
        if not self.closed:
            self._fh.close()
        super().close()
