"""Path parsing and resolution over folder tree snapshots.

The backend has no path-based addressing for files, so a path is resolved by
fetching its parent folder snapshot and scanning that folder's children.
"""

import logging
from typing import List, Optional, Tuple

from .errors import NoFileError
from .models import DirEntry, Folder

logger = logging.getLogger(__name__)


def parse_path(path: str) -> Tuple[str, str]:
    """Split a path into (parent path, last segment).

    >>> parse_path("/some/full/path/")
    ('/some/full', 'path')
    >>> parse_path("/something")
    ('/', 'something')
    """
    segments = path.strip("/").split("/")
    if len(segments) > 1:
        return "/" + "/".join(segments[:-1]), segments[-1]
    return "/", segments[0]


def split_segments(path: str) -> List[str]:
    """Return the non-empty segments of a path, top-down."""
    return [s for s in path.strip("/").split("/") if s]


def join_path(parent: str, name: str) -> str:
    if not name:
        return parent or "/"
    return parent.rstrip("/") + "/" + name


def is_root(path: str) -> bool:
    return path in ("", "/")


def lookup(folder: Folder, name: str) -> Optional[DirEntry]:
    """Find a direct child of `folder` by name. Files win over folders on a tie."""
    file = folder.file(name)
    if file is not None:
        return file
    return folder.subfolder(name)


def parent_folder(client, parent: str, *, timeout: Optional[float] = None) -> Folder:
    """Fetch the snapshot of `parent`, using the folder tree for the root."""
    if is_root(parent):
        return client.get_folders(timeout=timeout)[0]
    return client.get_folder(parent, timeout=timeout)


def resolve(client, path: str, *, timeout: Optional[float] = None) -> DirEntry:
    """Resolve `path` to exactly one File or Folder.

    Raises:
        NoFileError: nothing with that name exists in the parent folder.
        NoFolderError: the parent folder itself does not exist.
    """
    parent, name = parse_path(path)
    folder = parent_folder(client, parent, timeout=timeout)
    if not name:
        return folder

    entry = lookup(folder, name)
    if entry is None:
        logger.debug(f"No entry named {name!r} in {folder.path}")
        raise NoFileError(f"no file found: {path}", details={"path": path})
    return entry
