"""HTTP transport for the file storage API."""

import io
import logging
from typing import Any, Dict, Iterator, Optional, Protocol

import httpx

from .errors import NetworkError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Issues one request and returns the raw response.

    `stream=True` returns a response whose body has not been read yet; the
    caller owns it and must close it.
    """

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, Any]] = None,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        ...


class HttpxTransport:
    """Transport backed by a shared httpx.Client."""

    def __init__(self, timeout: float = 60.0, client: Optional[httpx.Client] = None):
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, Any]] = None,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        request = self._client.build_request(
            method,
            url,
            headers=headers,
            json=json,
            data=data,
            files=files,
            timeout=timeout if timeout is not None else self.timeout,
        )
        logger.debug(f"{method} {url}")
        try:
            return self._client.send(request, stream=stream)
        except httpx.RequestError as e:
            raise NetworkError(
                f"{method} {url} failed: {e}",
                details={"method": method, "url": url},
                cause=e,
            ) from e

    def close(self) -> None:
        self._client.close()


class ResponseStream(io.RawIOBase):
    """Sequential, non-seekable file object over a streamed response body."""

    def __init__(self, response: httpx.Response, chunk_size: int = 64 * 1024):
        self._response = response
        self.status_code = response.status_code
        self._chunks: Iterator[bytes] = response.iter_bytes(chunk_size)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
            except httpx.HTTPError as e:
                raise NetworkError("download stream broken", cause=e) from e
        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()
