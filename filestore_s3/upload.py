"""Resumable chunked upload."""

import json
import logging
import math
import posixpath
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, Optional, Tuple

from .api import API_UPLOAD
from .errors import (
    EmptyPayloadError,
    FileStoreError,
    ProtocolViolationError,
    UnauthorizedError,
    UnexpectedStatusError,
)
from .models import File

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 15 * 1024 * 1024  # 15 MiB
DEFAULT_FILE_TYPE = "application/octet-stream"
CONTEXT_FILE_STORAGE = "file-storage"


def count_chunks(total_size: int, chunk_size: int = MAX_CHUNK_SIZE) -> int:
    return math.ceil(total_size / chunk_size)


def iter_chunks(total_size: int, chunk_size: int = MAX_CHUNK_SIZE) -> Iterator[Tuple[int, int]]:
    """Yield (chunk number, chunk length) pairs, numbered from 1.

    Every chunk is `chunk_size` long except possibly the last one.
    """
    remaining = total_size
    for index in range(1, count_chunks(total_size, chunk_size) + 1):
        length = min(chunk_size, remaining)
        yield index, length
        remaining -= length


@dataclass
class UploadSession:
    """State of one upload call."""

    identifier: str
    file_name: str
    folder: str
    total_size: int
    chunk_size: int
    chunk: int = 0
    remaining: int = 0

    @property
    def total_chunks(self) -> int:
        return count_chunks(self.total_size, self.chunk_size)

    def fields(self) -> Dict[str, str]:
        """Multipart fields shared by every chunk of the session."""
        return {
            "resumableChunkSize": str(self.chunk_size),
            "resumableTotalSize": str(self.total_size),
            "resumableIdentifier": self.identifier,
            "resumableType": DEFAULT_FILE_TYPE,
            "resumableFilename": self.file_name,
            "resumableRelativePath": self.file_name,
            "resumableTotalChunks": str(self.total_chunks),
            "context": CONTEXT_FILE_STORAGE,
            "contextData": json.dumps({"folder": self.folder}),
        }


def split_destination(path: str) -> Tuple[str, str]:
    """Return (folder, file name) for an upload destination."""
    file_name = posixpath.basename(path)
    folder = posixpath.dirname(path)
    if not folder or folder[0] != "/":
        folder = "/" + folder
    return folder, file_name


class ChunkedUploader:
    """Pushes a byte stream to the backend one chunk at a time."""

    def __init__(self, client, chunk_size: int = MAX_CHUNK_SIZE):
        self.client = client
        self.chunk_size = chunk_size

    def upload(
        self,
        stream: BinaryIO,
        path: str,
        total_size: int,
        *,
        timeout: Optional[float] = None,
    ) -> File:
        """
        Upload `total_size` bytes read from `stream` to `path`.

        Chunks go out strictly in order, one at a time; the backend only
        materializes the file once the last chunk is accepted and answers it
        with the finished file record.

        Raises:
            EmptyPayloadError: total_size is zero.
            UnexpectedStatusError: a chunk was rejected; the upload is aborted.
            ProtocolViolationError: the stream ended early, or no file record
                came back for the final chunk.
        """
        if total_size <= 0:
            raise EmptyPayloadError("refusing to upload an empty file", details={"path": path})

        folder, file_name = split_destination(path)
        session = UploadSession(
            identifier=str(uuid.uuid4()),
            file_name=file_name,
            folder=folder,
            total_size=total_size,
            chunk_size=self.chunk_size,
            remaining=total_size,
        )
        logger.debug(
            f"Uploading {path}: {total_size} bytes in {session.total_chunks} chunks "
            f"(session {session.identifier})"
        )

        fields = session.fields()
        for index, length in iter_chunks(total_size, self.chunk_size):
            data = _read_exactly(stream, length)
            if len(data) != length:
                raise ProtocolViolationError(
                    f"stream ended after {total_size - session.remaining + len(data)} "
                    f"of {total_size} bytes",
                    details={"path": path, "chunk": index},
                )

            session.chunk = index
            fields["resumableChunkNumber"] = str(index)
            fields["resumableCurrentChunkSize"] = str(length)

            response = self.client.request(
                "POST",
                API_UPLOAD,
                data=dict(fields),
                files={"file": (file_name, data, DEFAULT_FILE_TYPE)},
                timeout=timeout,
            )
            if response.status_code != 200:
                raise _chunk_error(response, index, path)

            session.remaining -= length
            if index == session.total_chunks:
                return _decode_file(response, path)

            response.close()
            logger.debug(f"Chunk {index}/{session.total_chunks} of {path} accepted")

        raise ProtocolViolationError(
            "no response from endpoint", details={"path": path, "chunks": session.total_chunks}
        )


def _read_exactly(stream: BinaryIO, length: int) -> bytes:
    parts = []
    needed = length
    while needed > 0:
        data = stream.read(needed)
        if not data:
            break
        parts.append(data)
        needed -= len(data)
    return b"".join(parts)


def _chunk_error(response, index: int, path: str) -> FileStoreError:
    message = ""
    try:
        body = response.json()
        if isinstance(body, dict):
            message = body.get("message") or ""
    except ValueError:
        message = response.text
    text = f"chunk {index} upload failed, status: {response.status_code}, message: {message}"
    details = {"operation": "upload", "path": path, "chunk": index, "message": message}
    if response.status_code == 401:
        return UnauthorizedError(text, details=dict(details, status_code=401))
    return UnexpectedStatusError(text, response.status_code, details=details)


def _decode_file(response, path: str) -> File:
    try:
        body = response.json()
    except ValueError as e:
        raise ProtocolViolationError(
            "final chunk response is not a file record", details={"path": path}, cause=e
        ) from e
    if not isinstance(body, dict) or not body.get("id"):
        raise ProtocolViolationError(
            "final chunk response is not a file record", details={"path": path}
        )
    file = File.from_dict(body)
    logger.info(f"Uploaded {path} as {file.id} ({file.size} bytes)")
    return file
