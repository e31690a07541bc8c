"""Typed change notifications pushed by the backend."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileRef:
    id: str
    source: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "FileRef":
        return cls(id=str(data.get("id", "")), source=data.get("source") or "")


@dataclass(frozen=True)
class FolderChange:
    action: int
    parent_folder: str
    folder: str

    @classmethod
    def from_dict(cls, data: dict) -> "FolderChange":
        return cls(
            action=int(data.get("action") or 0),
            parent_folder=data.get("parentFolder") or "",
            folder=data.get("folder") or "",
        )


@dataclass(frozen=True)
class MailboxSize:
    size: int
    max_size: int

    @classmethod
    def from_dict(cls, data: dict) -> "MailboxSize":
        return cls(size=int(data.get("size") or 0), max_size=int(data.get("maxSize") or 0))


@dataclass(frozen=True)
class Mail:
    uid: int
    mail_id: int
    owner: str
    folder: str
    is_new: bool

    @classmethod
    def from_dict(cls, data: dict) -> "Mail":
        return cls(
            uid=int(data.get("uid") or 0),
            mail_id=int(data.get("mid") or 0),
            owner=data.get("ownerEmailAddress") or "",
            folder=data.get("folder") or "",
            is_new=bool(data.get("isNew")),
        )


@dataclass(frozen=True)
class Event:
    """One decoded notification. `kind` is the receiver hook that produced it."""

    kind: str
    items: Sequence[Any] = ()


class EventReceiver:
    """
    Decodes hub invocations into Events and hands them to `on_event`.

    With no callback every hook is a no-op sink.
    """

    TARGETS = {
        "FilesAdded": "files_added",
        "FilesDeleted": "files_deleted",
        "FilesModified": "files_modified",
        "FolderChange": "folder_changed",
        "FsFolderChange": "fs_folder_changed",
        "MailboxSizeUpdate": "mailbox_size_updated",
        "MailAdded": "mail_added",
        "MailModified": "mail_modified",
        "MailRemoved": "mail_removed",
    }

    def __init__(self, on_event: Optional[Callable[[Event], None]] = None):
        self.on_event = on_event

    def _emit(self, kind: str, items: Sequence[Any] = ()) -> None:
        logger.debug(f"Event {kind}: {len(items)} item(s)")
        if self.on_event is not None:
            self.on_event(Event(kind, tuple(items)))

    def dispatch(self, target: str, arguments: Sequence[Any] = ()) -> bool:
        """Route an inbound invocation by wire target name. Returns False if unknown."""
        hook = self.TARGETS.get(target)
        if hook is None:
            logger.debug(f"Ignoring unknown event target {target}")
            return False
        getattr(self, hook)(*arguments)
        return True

    def files_added(self, files: List[Dict[str, Any]]) -> None:
        self._emit("files_added", [FileRef.from_dict(f) for f in files])

    def files_deleted(self, files: List[Dict[str, Any]]) -> None:
        self._emit("files_deleted", [FileRef.from_dict(f) for f in files])

    def files_modified(self, files: List[Dict[str, Any]]) -> None:
        self._emit("files_modified", [FileRef.from_dict(f) for f in files])

    def folder_changed(self) -> None:
        self._emit("folder_changed")

    def fs_folder_changed(self, change: Dict[str, Any]) -> None:
        self._emit("fs_folder_changed", [FolderChange.from_dict(change)])

    def mailbox_size_updated(self, updates: List[Dict[str, Any]]) -> None:
        self._emit("mailbox_size_updated", [MailboxSize.from_dict(u) for u in updates])

    def mail_added(self, mail: List[Dict[str, Any]]) -> None:
        self._emit("mail_added", [Mail.from_dict(m) for m in mail])

    def mail_modified(self, mail: List[Dict[str, Any]]) -> None:
        self._emit("mail_modified", [Mail.from_dict(m) for m in mail])

    def mail_removed(self, mail: List[Dict[str, Any]]) -> None:
        self._emit("mail_removed", [Mail.from_dict(m) for m in mail])
