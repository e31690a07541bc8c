"""S3 Gateway WSGI Application for the file storage filesystem."""

import hashlib
import io
import json
import logging
import posixpath
from datetime import datetime, timezone
from email.utils import formatdate
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, unquote
from xml.etree.ElementTree import Element, tostring

from .errors import EmptyPayloadError, NoFolderError
from .models import File, Folder
from .paths import is_root
from .vfs import FileSystem, RemoteFile

logger = logging.getLogger(__name__)

BUCKET = "default"
STREAM_BLOCK_SIZE = 64 * 1024


def format_http_date(dt: Optional[datetime]) -> str:
    """Format a datetime as an HTTP date (RFC 2822)."""
    if dt is None:
        return formatdate(usegmt=True)
    return formatdate(dt.timestamp(), usegmt=True)


def format_iso_date(dt: Optional[datetime]) -> str:
    """ISO 8601 date for XML responses."""
    if dt is None:
        return "2023-01-01T00:00:00.000Z"
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def create_xml_response(root_tag: str, data: Dict[str, Any]) -> bytes:
    """Create S3 XML response."""
    root = Element(root_tag, xmlns="http://s3.amazonaws.com/doc/2006-03-01/")

    def add_children(parent, child_data):
        for key, value in child_data.items():
            if isinstance(value, list):
                for item in value:
                    child = Element(key)
                    parent.append(child)
                    if isinstance(item, dict):
                        add_children(child, item)
                    else:
                        child.text = str(item)
            elif isinstance(value, dict):
                child = Element(key)
                parent.append(child)
                add_children(child, value)
            else:
                child = Element(key)
                if value is not None:
                    child.text = str(value)
                parent.append(child)

    add_children(root, data)
    return b'<?xml version="1.0" encoding="UTF-8"?>\n' + tostring(root, encoding="utf-8")


def parse_range(header: str, size: int) -> Optional[Tuple[int, int]]:
    """Parse a single `bytes=` range into inclusive (start, end); None if unsatisfiable."""
    if not header.startswith("bytes=") or "," in header:
        return None
    start_s, _, end_s = header[len("bytes="):].strip().partition("-")
    try:
        if not start_s:
            suffix = int(end_s)
            if suffix <= 0:
                return None
            start, end = max(size - suffix, 0), size - 1
        else:
            start = int(start_s)
            end = int(end_s) if end_s else size - 1
    except ValueError:
        return None
    end = min(end, size - 1)
    if start > end or start >= size:
        return None
    return start, end


def decode_aws_chunked(stream) -> Iterator[bytes]:
    """Decode an aws-chunked (STREAMING-AWS4-HMAC-SHA256-PAYLOAD) body."""
    while True:
        line = stream.readline(1024)
        if not line:
            return
        try:
            chunk_size = int(line.decode("ascii").split(";")[0].strip(), 16)
        except ValueError:
            return
        if chunk_size == 0:
            return
        yield stream.read(chunk_size)
        stream.read(2)  # \r\n


class MetadataStore:
    """MD5 ETags of uploaded objects, keyed by file id, persisted as JSON."""

    def __init__(self, path):
        self.path = Path(path).expanduser()
        self.data: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        try:
            if self.path.exists():
                with open(self.path) as f:
                    self.data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load metadata: {e}")

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(self.data, f)
        except OSError as e:
            logger.warning(f"Failed to save metadata: {e}")

    def set(self, file_id: str, md5_hex: str) -> None:
        self.data[file_id] = md5_hex
        self.save()

    def etag(self, file: File) -> str:
        if file.id in self.data:
            return f'"{self.data[file.id]}"'
        return f'"{file.id}"'


class S3Gateway:
    """WSGI Application that translates S3 requests to filesystem calls."""

    def __init__(self, fs: FileSystem, metadata_file="~/.config/filestore-s3/metadata.json"):
        self.fs = fs
        self.metadata = MetadataStore(metadata_file)

    def __call__(self, environ, start_response):
        path = environ.get("PATH_INFO", "/")
        method = environ.get("REQUEST_METHOD", "GET")

        logger.info(f"S3 Request: {method} {path}")

        try:
            if path == "/":
                return self.handle_service(environ, start_response)

            # Parse bucket/key from path
            path = path.lstrip("/")
            if "/" in path:
                bucket, key = path.split("/", 1)
            else:
                bucket, key = path, ""

            if bucket != BUCKET:
                return self.send_error(start_response, "404 Not Found", "NoSuchBucket", f"Only '{BUCKET}' bucket")

            if method == "GET":
                if not key:
                    return self.handle_list_bucket(environ, start_response)
                return self.handle_get_object(environ, start_response, key)
            elif method == "HEAD":
                if not key:
                    start_response("200 OK", [("Content-Length", "0")])
                    return []
                return self.handle_head_object(environ, start_response, key)
            elif method == "PUT":
                if not key:
                    # CreateBucket - the single bucket always exists
                    start_response("200 OK", [("Content-Length", "0")])
                    return []
                return self.handle_put_object(environ, start_response, key)
            elif method == "DELETE" and key:
                return self.handle_delete_object(environ, start_response, key)

            return self.send_error(start_response, "400 Bad Request", "InvalidURI", "Invalid URI")

        except FileNotFoundError:
            return self.send_error(start_response, "404 Not Found", "NoSuchKey", "Key not found")
        except Exception as e:
            logger.exception("S3 Gateway Error")
            return self.send_error(start_response, "500 Internal Server Error", "InternalError", str(e))

    def send_response(self, start_response, status, content, content_type="application/xml", headers=None):
        resp_headers = [
            ("Content-Type", content_type),
            ("Content-Length", str(len(content))),
            ("Date", formatdate(usegmt=True)),
            ("Server", "FileStoreS3"),
        ]
        if headers:
            resp_headers.extend(headers)
        start_response(status, resp_headers)
        return [content]

    def send_error(self, start_response, status, code, message):
        xml = create_xml_response("Error", {"Code": code, "Message": message})
        return self.send_response(start_response, status, xml)

    def handle_service(self, environ, start_response):
        """List buckets."""
        data = {
            "Owner": {"ID": "filestore", "DisplayName": "filestore"},
            "Buckets": {"Bucket": [{"Name": BUCKET, "CreationDate": "2023-01-01T00:00:00.000Z"}]},
        }
        return self.send_response(start_response, "200 OK", create_xml_response("ListAllMyBucketsResult", data))

    def _object_info(self, key: str, file: File) -> Dict[str, Any]:
        return {
            "Key": key,
            "LastModified": format_iso_date(file.date_added),
            "ETag": self.metadata.etag(file),
            "Size": file.size,
            "StorageClass": "STANDARD",
        }

    def _prefix_folder(self, folder_path: str) -> Optional[Folder]:
        client = self.fs.client
        if is_root(folder_path):
            return client.get_root_folder(timeout=self.fs.timeout)
        try:
            return client.get_folder(folder_path, timeout=self.fs.timeout)
        except NoFolderError:
            return None

    def handle_list_bucket(self, environ, start_response):
        """List objects in the bucket."""
        params = parse_qs(environ.get("QUERY_STRING", ""))
        prefix = params.get("prefix", [""])[0]
        delimiter = params.get("delimiter", [""])[0]

        # The folder holding the prefix, and the partial name inside it
        folder_key, _, name_prefix = prefix.rpartition("/")
        base_prefix = folder_key + "/" if folder_key else ""
        folder = self._prefix_folder("/" + folder_key)

        contents: List[Dict[str, Any]] = []
        prefixes = set()

        if folder is not None and delimiter:
            # Non-recursive listing (with delimiter)
            for sub in folder.subfolders:
                if sub.name.startswith(name_prefix):
                    prefixes.add(base_prefix + sub.name + "/")
            for file in folder.files:
                if file.name.startswith(name_prefix):
                    contents.append(self._object_info(base_prefix + file.name, file))
        elif folder is not None:
            # Recursive listing over the snapshot, no further requests
            for sub in folder.flatten():
                sub_prefix = sub.path.strip("/")
                for file in sub.files:
                    key = f"{sub_prefix}/{file.name}" if sub_prefix else file.name
                    if key.startswith(prefix):
                        contents.append(self._object_info(key, file))

        contents.sort(key=lambda c: c["Key"])
        response_data = {
            "Name": BUCKET,
            "Prefix": prefix,
            "KeyCount": len(contents) + len(prefixes),
            "MaxKeys": 10000,
            "IsTruncated": "false",
            "Contents": contents,
        }
        if prefixes:
            response_data["CommonPrefixes"] = [{"Prefix": p} for p in sorted(prefixes)]

        return self.send_response(start_response, "200 OK", create_xml_response("ListBucketResult", response_data))

    def _open_object(self, start_response, key: str):
        handle = self.fs.open("/" + key)
        if not isinstance(handle.entry, File):
            handle.close()
            return None, self.send_error(start_response, "400 Bad Request", "InvalidRequest", "Cannot download folder")
        return handle, None

    def handle_get_object(self, environ, start_response, key):
        """Download object, honouring a single Range header."""
        handle, error = self._open_object(start_response, key)
        if error is not None:
            return error
        file = handle.entry

        headers = [
            ("Content-Type", file.type or "application/octet-stream"),
            ("Last-Modified", format_http_date(file.date_added)),
            ("ETag", self.metadata.etag(file)),
            ("Accept-Ranges", "bytes"),
        ]

        range_header = environ.get("HTTP_RANGE")
        if range_header:
            span = parse_range(range_header, file.size)
            if span is None:
                handle.close()
                return self.send_error(start_response, "416 Range Not Satisfiable", "InvalidRange", "Invalid range")
            start, end = span
            try:
                data = self._read_range(handle, start, end, range_header)
            finally:
                handle.close()
            headers.append(("Content-Range", f"bytes {start}-{end}/{file.size}"))
            headers.append(("Content-Length", str(len(data))))
            start_response("206 Partial Content", headers)
            return [data]

        headers.append(("Content-Length", str(file.size)))
        start_response("200 OK", headers)
        return self._stream_body(handle)

    def _read_range(self, handle: RemoteFile, start: int, end: int, range_header: str) -> bytes:
        if self.fs.cache is not None:
            return handle.read_at(end - start + 1, start)
        with self.fs.client.download_file(
            handle.id, headers={"Range": range_header}, timeout=self.fs.timeout
        ) as stream:
            if stream.status_code == 206:
                return stream.read()
            # Backend ignored the Range header and sent the whole file
            return _read_span(stream, start, end - start + 1)

    @staticmethod
    def _stream_body(handle: RemoteFile) -> Iterator[bytes]:
        try:
            while True:
                data = handle.read(STREAM_BLOCK_SIZE)
                if not data:
                    break
                yield data
        finally:
            handle.close()

    def handle_head_object(self, environ, start_response, key):
        """Get object metadata."""
        handle, error = self._open_object(start_response, key)
        if error is not None:
            return error
        file = handle.entry
        handle.close()

        headers = [
            ("Content-Type", file.type or "application/octet-stream"),
            ("Content-Length", str(file.size)),
            ("Last-Modified", format_http_date(file.date_added)),
            ("ETag", self.metadata.etag(file)),
        ]
        start_response("200 OK", headers)
        return []

    def _write_object(self, key: str, chunks) -> Tuple[File, str]:
        dirname = posixpath.dirname(key)
        if dirname:
            self.fs.mkdir_all("/" + dirname)

        file_md5 = hashlib.md5()
        handle = self.fs.create("/" + key)
        try:
            # An empty body still goes through close() so it is rejected there
            handle.truncate(0)
            for data in chunks:
                file_md5.update(data)
                handle.write(data)
            handle.close()
        except BaseException:
            handle.discard()
            raise

        md5_hex = file_md5.hexdigest()
        self.metadata.set(handle.id, md5_hex)
        return handle.entry, md5_hex

    def handle_put_object(self, environ, start_response, key):
        """Upload object or copy object."""
        copy_source = environ.get("HTTP_X_AMZ_COPY_SOURCE")
        if copy_source:
            return self.handle_copy_object(environ, start_response, key, copy_source)

        stream = environ["wsgi.input"]
        if environ.get("HTTP_X_AMZ_CONTENT_SHA256") == "STREAMING-AWS4-HMAC-SHA256-PAYLOAD":
            # Ensure stream supports readline for chunked decoding
            if not hasattr(stream, "readline"):
                stream = io.BufferedReader(stream)
            chunks = decode_aws_chunked(stream)
        else:
            try:
                content_length = int(environ.get("CONTENT_LENGTH") or 0)
            except ValueError:
                content_length = 0
            chunks = _read_body(stream, content_length)

        try:
            _, md5_hex = self._write_object(key, chunks)
        except EmptyPayloadError:
            return self.send_error(start_response, "400 Bad Request", "InvalidRequest", "Empty objects are not supported")

        return self.send_response(start_response, "200 OK", b"", headers=[("ETag", f'"{md5_hex}"')])

    def handle_delete_object(self, environ, start_response, key):
        """Delete object."""
        try:
            self.fs.remove("/" + key)
        except FileNotFoundError:
            pass
        return self.send_response(start_response, "204 No Content", b"")

    def handle_copy_object(self, environ, start_response, key, copy_source):
        """Copy an object from source to destination."""
        # Parse copy source: /bucket/key or bucket/key
        copy_source = unquote(copy_source).lstrip("/")
        if "/" not in copy_source:
            return self.send_error(start_response, "400 Bad Request", "InvalidArgument", "Invalid copy source")
        src_bucket, src_key = copy_source.split("/", 1)

        logger.info(f"CopyObject: {src_bucket}/{src_key} -> {BUCKET}/{key}")

        handle, error = self._open_object(start_response, src_key)
        if error is not None:
            return error
        src_file = handle.entry

        try:
            _, md5_hex = self._write_object(key, self._stream_body(handle))
        finally:
            handle.close()

        copy_result = {
            "ETag": f'"{md5_hex}"',
            "LastModified": format_iso_date(src_file.date_added),
        }
        return self.send_response(start_response, "200 OK", create_xml_response("CopyObjectResult", copy_result))


def _read_body(stream, content_length: int) -> Iterator[bytes]:
    if content_length > 0:
        left = content_length
        while left > 0:
            data = stream.read(min(left, STREAM_BLOCK_SIZE))
            if not data:
                break
            left -= len(data)
            yield data
        return
    while True:
        data = stream.read(STREAM_BLOCK_SIZE)
        if not data:
            break
        yield data


def _read_span(stream, start: int, length: int) -> bytes:
    out = bytearray()
    pos = 0
    while len(out) < length:
        data = stream.read(STREAM_BLOCK_SIZE)
        if not data:
            break
        skip = max(start - pos, 0)
        if skip < len(data):
            out += data[skip:skip + length - len(out)]
        pos += len(data)
    return bytes(out)
