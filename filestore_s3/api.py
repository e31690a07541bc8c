"""File storage API client."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .auth import TokenManager, join_url
from .errors import ApiError, FileStoreError, NoFileError, NoFolderError, status_error
from .models import DirEntry, DiskUsage, EditFileParams, File, FileLink, Folder
from .paths import parse_path, resolve
from .transport import HttpxTransport, ResponseStream, Transport

logger = logging.getLogger(__name__)

API_UPLOAD = "api/upload"
API_DISK_USAGE = "api/v1/filestorage/disk-usage-summary"
API_FILES = "api/v1/filestorage/files"
API_DELETE_FILES = "api/v1/filestorage/delete-files"
API_MOVE_FILES = "api/v1/filestorage/move-files"
API_EDIT_FILE = "api/v1/filestorage/{file_id}/edit"
API_GET_FILE_LINK = "api/v1/filestorage/{file_id}/getlink"
API_FOLDER = "api/v1/filestorage/folder"
API_FOLDERS = "api/v1/filestorage/folders"
API_PUT_FOLDER = "api/v1/filestorage/folder-put"
API_DELETE_FOLDER = "api/v1/filestorage/delete-folder"
API_PATCH_FOLDER = "api/v1/filestorage/folder-patch"
API_FILE_DOWNLOAD = "api/v1/filestorage/{file_id}/download"


class FileStoreClient:
    """File storage API client authorized through a TokenManager."""

    def __init__(
        self,
        api_url: str,
        auth: TokenManager,
        *,
        transport: Optional[Transport] = None,
        user: Optional[str] = None,
    ):
        self.api_url = api_url
        self.auth = auth
        self.transport = transport or auth.transport or HttpxTransport()
        self.user = user

    def __repr__(self) -> str:
        return f"FileStoreClient(api_url={self.api_url!r})"

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a bearer-authorized API request and return the raw response."""
        token = self.auth.get_token(self.user, timeout=timeout)
        headers = dict(headers or {})
        headers["Authorization"] = f"Bearer {token}"
        url = join_url(self.api_url, endpoint)
        return self.transport.request(method, url, headers=headers, timeout=timeout, **kwargs)

    def _call(
        self,
        operation: str,
        method: str,
        endpoint: str,
        *,
        timeout: Optional[float] = None,
        check_success: bool = True,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        response = self.request(method, endpoint, timeout=timeout, **kwargs)
        if response.status_code != 200:
            raise status_error(operation, response.status_code, endpoint=endpoint)
        try:
            data = response.json()
        except ValueError as e:
            raise FileStoreError(
                f"{operation}: failed to decode response",
                details={"operation": operation, "endpoint": endpoint},
                cause=e,
            ) from e
        if check_success and isinstance(data, dict) and data.get("success") is False:
            message = data.get("message") or "request failed"
            raise ApiError(f"{operation}: {message}", details={"operation": operation})
        return data

    def disk_usage_summary(self, *, timeout: Optional[float] = None) -> DiskUsage:
        data = self._call("disk usage", "GET", API_DISK_USAGE, timeout=timeout)
        return DiskUsage.from_dict(data.get("diskUsage") or {})

    def get_folders(self, *, timeout: Optional[float] = None) -> List[Folder]:
        """Return every folder, root first, flattened parent-before-children."""
        return self.get_root_folder(timeout=timeout).flatten()

    def get_root_folder(self, *, timeout: Optional[float] = None) -> Folder:
        """Return the full folder tree snapshot."""
        data = self._call("get folders", "GET", API_FOLDERS, timeout=timeout)
        return Folder.from_dict(data.get("folder") or {})

    def get_folder(self, folder: str, *, timeout: Optional[float] = None) -> Folder:
        """Return the snapshot of a single folder by path."""
        data = self._call(
            "get folder", "POST", API_FOLDER,
            json={"folder": folder}, timeout=timeout, check_success=False,
        )
        if not data.get("success"):
            message = data.get("message") or ""
            if message == "Folder not found":
                raise NoFolderError(f"no folder found: {folder}", details={"path": folder})
            raise ApiError(f"get folder: {message}", details={"path": folder})
        return Folder.from_dict(data.get("folder") or {})

    def get_files(self, *ids: str, timeout: Optional[float] = None) -> List[File]:
        data = self._call(
            "get files", "POST", API_FILES,
            json={"fileIds": list(ids)}, timeout=timeout, check_success=False,
        )
        return [File.from_dict(f) for f in data.get("files") or []]

    def delete_files(self, *ids: str, timeout: Optional[float] = None) -> None:
        logger.debug(f"Deleting files {ids}")
        self._call(
            "delete files", "POST", API_DELETE_FILES,
            json={"fileIds": list(ids)}, timeout=timeout, check_success=False,
        )

    def download_file(
        self,
        file_id: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ResponseStream:
        """Open a file's content as a sequential stream. `headers` may carry Range."""
        endpoint = API_FILE_DOWNLOAD.format(file_id=file_id)
        response = self.request("GET", endpoint, headers=headers, stream=True, timeout=timeout)
        if response.status_code not in (200, 206):
            response.close()
            raise status_error("download file", response.status_code, file_id=file_id)
        return ResponseStream(response)

    def get_file_id(self, directory: str, file_name: str, *, timeout: Optional[float] = None) -> str:
        """Return the id of `file_name` inside `directory`."""
        entry = resolve(self, f"{directory.rstrip('/')}/{file_name}", timeout=timeout)
        if not isinstance(entry, File):
            raise NoFileError(
                f"no file found: {file_name}", details={"path": directory, "name": file_name}
            )
        return entry.id

    def find(self, path: str, *, timeout: Optional[float] = None) -> DirEntry:
        """Resolve a path to a File or Folder; raise NoFileError when absent."""
        return resolve(self, path, timeout=timeout)

    def create_folder(self, folder: str, *, timeout: Optional[float] = None) -> Folder:
        parent, name = parse_path(folder)
        data = self._call(
            "create folder", "POST", API_PUT_FOLDER,
            json={"parentFolder": parent, "folder": name}, timeout=timeout,
        )
        logger.info(f"Created folder {folder}")
        return Folder.from_dict(data.get("folder") or {"name": name, "path": folder})

    def delete_folder(self, folder: str, *, timeout: Optional[float] = None) -> None:
        parent, name = parse_path(folder)
        self._call(
            "delete folder", "POST", API_DELETE_FOLDER,
            json={"parentFolder": parent, "folder": name}, timeout=timeout,
        )
        logger.info(f"Deleted folder {folder}")

    def move_files(self, folder: str, *file_ids: str, timeout: Optional[float] = None) -> None:
        self._call(
            "move files", "POST", API_MOVE_FILES,
            json={"newFolder": folder, "fileIDs": list(file_ids)}, timeout=timeout,
        )

    def rename_file(self, file_id: str, name: str, *, timeout: Optional[float] = None) -> None:
        self._call(
            "rename file", "POST", API_EDIT_FILE.format(file_id=file_id),
            json={"newFilename": name}, timeout=timeout,
        )

    def edit_file(
        self, file_id: str, params: EditFileParams, *, timeout: Optional[float] = None
    ) -> None:
        self._call(
            "edit file", "POST", API_EDIT_FILE.format(file_id=file_id),
            json=params.to_dict(), timeout=timeout,
        )

    def get_link(self, file_id: str, *, timeout: Optional[float] = None) -> FileLink:
        """Create (or fetch) the short and public links of a file."""
        data = self._call(
            "get link", "GET", API_GET_FILE_LINK.format(file_id=file_id), timeout=timeout
        )
        return FileLink(
            short_link=data.get("shortLink") or "",
            public_link=data.get("publicLink") or "",
            is_public=bool(data.get("isPublic")),
        )

    def move_folder(
        self,
        folder: str,
        new_parent: str = "",
        new_name: str = "",
        *,
        timeout: Optional[float] = None,
    ) -> None:
        """Move and/or rename a folder in one request. Empty values keep the current one."""
        _, name = parse_path(folder)
        payload = {"folder": folder, "newFolderName": new_name or name}
        if new_parent:
            payload["newParentFolder"] = new_parent
        self._call("move folder", "POST", API_PATCH_FOLDER, json=payload, timeout=timeout)
        logger.info(f"Moved folder {folder} -> {new_parent or '(same parent)'}/{new_name or name}")
