"""Data models for the file storage API."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from .timeutil import parse_optional, to_iso


@dataclass(frozen=True)
class File:
    """A file stored remotely, identified by `id`."""

    id: str
    name: str
    type: str = ""
    size: int = 0
    date_added: Optional[datetime] = None
    folder_path: str = "/"

    @classmethod
    def from_dict(cls, data: dict) -> "File":
        """Create File from API response dict."""
        return cls(
            id=str(data.get("id", "")),
            name=data.get("fileName", ""),
            type=data.get("type") or "",
            size=int(data.get("size") or 0),
            date_added=parse_optional(data.get("dateAdded")),
            folder_path=data.get("folderPath") or "/",
        )


@dataclass
class Folder:
    """A point-in-time snapshot of a remote folder and all of its descendants."""

    name: str
    path: str
    size: int = 0
    version: str = ""
    count: int = 0
    subfolders: List["Folder"] = field(default_factory=list)
    files: List[File] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Folder":
        """Create Folder (recursively) from API response dict."""
        return cls(
            name=data.get("name", ""),
            path=data.get("path") or "/",
            size=int(data.get("size") or 0),
            version=str(data.get("version") or ""),
            count=int(data.get("count") or 0),
            subfolders=[cls.from_dict(f) for f in data.get("subfolders") or []],
            files=[File.from_dict(f) for f in data.get("files") or []],
        )

    def flatten(self) -> List["Folder"]:
        """Return this folder and every descendant, parents before children."""
        folders: List[Folder] = []
        stack = [self]
        while stack:
            folder = stack.pop()
            folders.append(folder)
            stack.extend(reversed(folder.subfolders))
        return folders

    def subfolder(self, name: str) -> Optional["Folder"]:
        for folder in self.subfolders:
            if folder.name == name:
                return folder
        return None

    def file(self, name: str) -> Optional[File]:
        for f in self.files:
            if f.name == name:
                return f
        return None


# Result of path resolution: exactly one of the two, never both.
DirEntry = Union[File, Folder]


@dataclass
class Credential:
    """Access and refresh tokens for one user."""

    username: str
    access_token: str
    access_token_expiration: datetime
    refresh_token: str
    refresh_token_expiration: datetime

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        """Create Credential from an authenticate/refresh response."""
        access_exp = parse_optional(data.get("accessTokenExpiration"))
        refresh_exp = parse_optional(data.get("refreshTokenExpiration"))
        if access_exp is None or refresh_exp is None:
            raise ValueError("credential response is missing token expirations")
        return cls(
            username=data.get("username", ""),
            access_token=data.get("accessToken", ""),
            access_token_expiration=access_exp,
            refresh_token=data.get("refreshToken", ""),
            refresh_token_expiration=refresh_exp,
        )

    def access_expires_within(self, now: datetime, window: timedelta) -> bool:
        return self.access_token_expiration < now + window

    def refresh_expired(self, now: datetime) -> bool:
        return self.refresh_token_expiration < now

    def __repr__(self) -> str:
        return (
            f"Credential(username={self.username!r}, "
            f"access_token_expiration={self.access_token_expiration!r}, "
            f"refresh_token_expiration={self.refresh_token_expiration!r})"
        )


@dataclass
class DiskUsage:
    """Account storage usage, in bytes."""

    allowed: int = 0
    used: int = 0
    mailboxes: int = 0
    appointments: int = 0
    contacts: int = 0
    notes: int = 0
    tasks: int = 0
    file_storage: int = 0
    meeting_workspace: int = 0
    chat_files: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "DiskUsage":
        return cls(
            allowed=int(data.get("allowed") or 0),
            used=int(data.get("used") or 0),
            mailboxes=int(data.get("mailboxes") or 0),
            appointments=int(data.get("appointmentsUsed") or 0),
            contacts=int(data.get("contactsUsed") or 0),
            notes=int(data.get("notesUsed") or 0),
            tasks=int(data.get("tasksUsed") or 0),
            file_storage=int(data.get("fileStorageUsed") or 0),
            meeting_workspace=int(data.get("meetingWorkspaceUsed") or 0),
            chat_files=int(data.get("chatFilesUsed") or 0),
        )


@dataclass
class EditFileParams:
    """Publishing settings accepted by the edit-file endpoint."""

    password: str = ""
    published: bool = False
    published_until: Optional[datetime] = None
    short_link: str = ""
    public_download_link: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "password": self.password,
            "published": self.published,
            "publishedUntil": to_iso(self.published_until) if self.published_until else None,
            "shortLink": self.short_link,
            "publicDownloadLink": self.public_download_link,
        }


@dataclass(frozen=True)
class FileLink:
    """Short and public links for a file."""

    short_link: str
    public_link: str
    is_public: bool = False
