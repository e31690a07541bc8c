"""Filesystem view over the file storage API."""

import errno
import io
import logging
import os
import stat as stat_module
import tempfile
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, List, Optional

from .api import FileStoreClient
from .cache import CachedReader, ReadThroughCache
from .errors import (
    EmptyPayloadError,
    FileStoreError,
    NoFileError,
    NoFolderError,
    NotFoundError,
    NotSupportedError,
)
from .models import DirEntry, File, Folder
from .paths import is_root, join_path, parse_path, split_segments
from .timeutil import now_utc
from .upload import ChunkedUploader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    """Stat result for a remote file or folder."""

    name: str
    size: int
    mode: int
    mtime: datetime
    is_dir: bool
    id: str = ""

    @classmethod
    def from_entry(cls, entry: DirEntry) -> "FileStat":
        if isinstance(entry, Folder):
            return cls(
                name=entry.name,
                size=entry.size,
                mode=stat_module.S_IFDIR | 0o755,
                mtime=now_utc(),
                is_dir=True,
            )
        return cls(
            name=entry.name,
            size=entry.size,
            mode=stat_module.S_IFREG | 0o644,
            mtime=entry.date_added or now_utc(),
            is_dir=False,
            id=entry.id,
        )


def _not_found(name: str, exc: Exception) -> FileNotFoundError:
    err = FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), name)
    err.__cause__ = exc
    return err


class FileSystem:
    """
    POSIX-like operations on top of the remote folder tree.

    Writes are buffered in a local scratch file and uploaded when the handle
    is closed. Random-access reads need a ReadThroughCache; without one only
    sequential reads are available.
    """

    def __init__(
        self,
        client: FileStoreClient,
        *,
        cache: Optional[ReadThroughCache] = None,
        scratch_dir: Optional[str] = None,
        uploader: Optional[ChunkedUploader] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.cache = cache
        self.scratch_dir = scratch_dir
        self.uploader = uploader or ChunkedUploader(client)
        self.timeout = timeout

    def name(self) -> str:
        return "filestore"

    def _resolve(self, name: str) -> DirEntry:
        try:
            return self.client.find(name, timeout=self.timeout)
        except NotFoundError as e:
            raise _not_found(name, e) from e

    def create(self, name: str) -> "RemoteFile":
        """Open `name` for writing, creating it on close."""
        return self.open_file(name, os.O_RDWR | os.O_CREAT | os.O_TRUNC)

    def open(self, name: str) -> "RemoteFile":
        return self.open_file(name, os.O_RDONLY)

    def open_file(self, name: str, flags: int, perm: int = 0o644) -> "RemoteFile":
        entry: Optional[DirEntry]
        try:
            entry = self.client.find(name, timeout=self.timeout)
        except NoFileError as e:
            if not flags & os.O_CREAT:
                raise _not_found(name, e) from e
            entry = None
        except NoFolderError as e:
            raise _not_found(name, e) from e
        else:
            if flags & os.O_CREAT and flags & os.O_EXCL:
                raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), name)

        if isinstance(entry, Folder):
            if flags & os.O_TRUNC:
                raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), name)
            logger.debug(f"Opening folder {name}")
        elif entry is not None:
            logger.debug(f"Opening file {name}")

        parent, leaf = parse_path(name)
        return RemoteFile(self, parent, leaf, entry, flags)

    def stat(self, name: str) -> FileStat:
        return FileStat.from_entry(self._resolve(name))

    def exists(self, name: str) -> bool:
        try:
            self.client.find(name, timeout=self.timeout)
        except NotFoundError:
            return False
        return True

    def listdir(self, name: str) -> List[FileStat]:
        entry = self._resolve(name)
        if not isinstance(entry, Folder):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), name)
        return _folder_listing(entry)

    def mkdir(self, name: str, perm: int = 0o755) -> None:
        """Create one folder. Succeeds without change when it already exists."""
        logger.debug(f"Mkdir {name}")
        parent, leaf = parse_path(name)
        parent_entry = self._resolve(parent)
        if not isinstance(parent_entry, Folder):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), parent)

        if parent_entry.subfolder(leaf) is not None:
            logger.debug(f"Folder {name} already exists")
            return
        if parent_entry.file(leaf) is not None:
            raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), name)

        self.client.create_folder(join_path(parent_entry.path, leaf), timeout=self.timeout)

    def mkdir_all(self, path: str, perm: int = 0o755) -> None:
        """Create `path` and every missing folder above it, top-down."""
        logger.debug(f"MkdirAll {path}")
        current = self.client.get_root_folder(timeout=self.timeout)
        for segment in split_segments(path):
            child = current.subfolder(segment)
            if child is None:
                if current.file(segment) is not None:
                    raise NotADirectoryError(
                        errno.ENOTDIR, os.strerror(errno.ENOTDIR), join_path(current.path, segment)
                    )
                child = self.client.create_folder(
                    join_path(current.path, segment), timeout=self.timeout
                )
            current = child

    def remove(self, name: str) -> None:
        """Delete a file, or a folder together with everything below it."""
        if is_root(name.strip("/")):
            raise NotSupportedError("cannot remove the root folder")
        entry = self._resolve(name)
        if isinstance(entry, Folder):
            logger.debug(f"Removing folder {entry.path}")
            self.client.delete_folder(entry.path, timeout=self.timeout)
        else:
            logger.debug(f"Removing file {name} ({entry.id})")
            self.client.delete_files(entry.id, timeout=self.timeout)

    def remove_all(self, name: str) -> None:
        try:
            self.remove(name)
        except FileNotFoundError:
            pass

    def rename(self, old_name: str, new_name: str) -> None:
        """Rename and/or move a file or folder.

        Moving and renaming a file are two backend calls. If the rename fails
        after the move, the file is moved back before the error is raised.
        """
        entry = self._resolve(old_name)
        old_parent, old_leaf = parse_path(old_name)
        new_parent, new_leaf = parse_path(new_name)
        moved = new_parent != old_parent

        if isinstance(entry, Folder):
            self.client.move_folder(
                entry.path, new_parent if moved else "", new_leaf, timeout=self.timeout
            )
            return

        if moved:
            self.client.move_files(new_parent, entry.id, timeout=self.timeout)
        if new_leaf == old_leaf:
            return
        try:
            self.client.rename_file(entry.id, new_leaf, timeout=self.timeout)
        except FileStoreError:
            if moved:
                logger.warning(f"Rename of {old_name} failed, moving it back to {old_parent}")
                self.client.move_files(old_parent, entry.id, timeout=self.timeout)
            raise

    def chmod(self, name: str, mode: int) -> None:
        raise NotSupportedError("chmod is not supported")

    def chown(self, name: str, uid: int, gid: int) -> None:
        raise NotSupportedError("chown is not supported")

    def chtimes(self, name: str, atime: datetime, mtime: datetime) -> None:
        raise NotSupportedError("chtimes is not supported")

    def handle_event(self, event) -> None:
        """Change notification hook; snapshots are always fetched fresh, so nothing to invalidate."""
        logger.debug(f"Ignoring change event {event!r}")


def _folder_listing(folder: Folder) -> List[FileStat]:
    infos = [FileStat.from_entry(f) for f in folder.subfolders]
    infos.extend(FileStat.from_entry(f) for f in folder.files)
    return infos


class RemoteFile:
    """Open handle on a remote file or folder."""

    def __init__(
        self,
        fs: FileSystem,
        parent: str,
        name: str,
        entry: Optional[DirEntry],
        flags: int,
    ):
        self.fs = fs
        self.parent = parent
        self._name = name
        self.entry = entry
        self.flags = flags
        self.closed = False
        self._scratch: Optional[BinaryIO] = None
        self._stream: Optional[BinaryIO] = None
        self._reader: Optional[CachedReader] = None

    def __repr__(self) -> str:
        return f"RemoteFile({self.path!r})"

    def __enter__(self) -> "RemoteFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.discard()

    @property
    def path(self) -> str:
        return join_path(self.parent, self._name)

    @property
    def name(self) -> str:
        if self.entry is not None:
            return self.entry.name
        return self._name

    @property
    def id(self) -> str:
        if isinstance(self.entry, File):
            return self.entry.id
        return ""

    def _file(self) -> File:
        if isinstance(self.entry, Folder):
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), self.path)
        if self.entry is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), self.path)
        return self.entry

    def read(self, size: int = -1) -> bytes:
        file = self._file()
        if self._reader is not None:
            return self._reader.read(size)
        if self._stream is None:
            self._stream = self.fs.client.download_file(file.id, timeout=self.fs.timeout)
        return self._stream.read(size)

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to `size` bytes at `offset`; b"" once past the file's size."""
        if self.fs.cache is None:
            raise NotSupportedError("random access reads need a read cache")
        file = self._file()
        logger.debug(f"Reading {size} bytes of {self.path} at {offset}")
        if offset >= file.size:
            return b""
        return self._open_reader(file).read_at(size, offset)

    def _open_reader(self, file: File) -> CachedReader:
        if self._reader is None:
            logger.debug(f"Opening cached reader for {self.path}")
            self._reader = self.fs.cache.open(
                file.id,
                file.size,
                lambda: self.fs.client.download_file(file.id, timeout=self.fs.timeout),
            )
        return self._reader

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if self.fs.cache is None or isinstance(self.entry, Folder):
            raise NotSupportedError("seek needs a read cache")
        if self._scratch is not None:
            raise NotSupportedError("seek on a handle being written")
        return self._open_reader(self._file()).seek(offset, whence)

    def _writable_scratch(self) -> BinaryIO:
        if not self.flags & (os.O_WRONLY | os.O_RDWR):
            raise io.UnsupportedOperation(f"{self.path} is not open for writing")
        if isinstance(self.entry, Folder):
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), self.path)
        if self._scratch is None:
            self._scratch = tempfile.TemporaryFile(prefix="filestore_", dir=self.fs.scratch_dir)
        return self._scratch

    def write(self, data: bytes) -> int:
        scratch = self._writable_scratch()
        scratch.seek(0, os.SEEK_END)
        return scratch.write(data)

    def write_at(self, data: bytes, offset: int) -> int:
        scratch = self._writable_scratch()
        scratch.seek(offset)
        return scratch.write(data)

    def write_string(self, s: str) -> int:
        return self.write(s.encode("utf-8"))

    def truncate(self, size: int) -> None:
        self._writable_scratch().truncate(size)

    def sync(self) -> None:
        pass

    def stat(self) -> FileStat:
        if self.entry is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), self.path)
        return FileStat.from_entry(self.entry)

    def readdir(self) -> List[FileStat]:
        if not isinstance(self.entry, Folder):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), self.path)
        return _folder_listing(self.entry)

    def readdirnames(self) -> List[str]:
        return [info.name for info in self.readdir()]

    def close(self) -> None:
        """Upload buffered writes, or release read resources.

        A failed upload keeps the scratch buffer so close() can be retried;
        call discard() to drop it instead.
        """
        if self.closed:
            return
        if self._scratch is not None:
            self._upload()
        self._release()
        self.closed = True

    def discard(self) -> None:
        """Close without uploading anything that was written."""
        if self._scratch is not None:
            self._scratch.close()
            self._scratch = None
        self._release()
        self.closed = True

    def _release(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._reader is not None:
            self._reader.close()
            self._reader = None

    def _upload(self) -> None:
        scratch = self._scratch
        scratch.flush()
        size = scratch.seek(0, os.SEEK_END)
        if size == 0:
            self.discard()
            raise EmptyPayloadError("file is empty", details={"path": self.path})

        scratch.seek(0)
        previous = self.entry
        file = self.fs.uploader.upload(scratch, self.path, size, timeout=self.fs.timeout)
        self.entry = file
        scratch.close()
        self._scratch = None

        if isinstance(previous, File) and previous.id != file.id:
            logger.debug(f"Replacing {self.path}: deleting previous version {previous.id}")
            self.fs.client.delete_files(previous.id, timeout=self.fs.timeout)
