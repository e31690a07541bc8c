import hashlib
import io
import tempfile
import unittest
from pathlib import Path

from fakes import FakeBackend, make_fs

from filestore_s3.gateway import S3Gateway, decode_aws_chunked, parse_range


class RangeIgnoringBackend(FakeBackend):
    def _filestorage(self, method, endpoint, body, headers):
        return super()._filestorage(method, endpoint, body, {})


class TestHelpers(unittest.TestCase):
    def test_parse_range(self) -> None:
        self.assertEqual(parse_range("bytes=0-4", 10), (0, 4))
        self.assertEqual(parse_range("bytes=5-", 10), (5, 9))
        self.assertEqual(parse_range("bytes=-3", 10), (7, 9))
        self.assertEqual(parse_range("bytes=8-100", 10), (8, 9))
        self.assertIsNone(parse_range("bytes=10-12", 10))
        self.assertIsNone(parse_range("bytes=0-1,3-4", 10))
        self.assertIsNone(parse_range("items=0-1", 10))

    def test_decode_aws_chunked(self) -> None:
        body = b"5;chunk-signature=abc\r\nhello\r\n6;chunk-signature=def\r\n world\r\n0;chunk-signature=x\r\n\r\n"
        self.assertEqual(b"".join(decode_aws_chunked(io.BytesIO(body))), b"hello world")


class TestS3Gateway(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.backend = FakeBackend()
        self.fs = make_fs(self.backend)
        self.app = S3Gateway(self.fs, metadata_file=Path(self._tmp.name) / "metadata.json")

    def call(self, method, path, body=b"", query="", **headers):
        environ = {
            "REQUEST_METHOD": method,
            "PATH_INFO": path,
            "QUERY_STRING": query,
            "CONTENT_LENGTH": str(len(body)),
            "wsgi.input": io.BytesIO(body),
        }
        environ.update(headers)
        captured = {}

        def start_response(status, response_headers):
            captured["status"] = status
            captured["headers"] = dict(response_headers)

        content = b"".join(self.app(environ, start_response))
        return captured["status"], captured["headers"], content

    def test_put_then_get(self) -> None:
        status, headers, _ = self.call("PUT", "/default/dir/obj.txt", b"hello world")
        self.assertEqual(status, "200 OK")
        md5 = hashlib.md5(b"hello world").hexdigest()
        self.assertEqual(headers["ETag"], f'"{md5}"')
        self.assertIn("/dir", self.backend.folders)

        status, headers, content = self.call("GET", "/default/dir/obj.txt")
        self.assertEqual(status, "200 OK")
        self.assertEqual(content, b"hello world")
        self.assertEqual(headers["ETag"], f'"{md5}"')

    def test_head(self) -> None:
        self.call("PUT", "/default/obj.txt", b"hello world")
        status, headers, content = self.call("HEAD", "/default/obj.txt")
        self.assertEqual(status, "200 OK")
        self.assertEqual(headers["Content-Length"], "11")
        self.assertEqual(content, b"")

    def test_range_get(self) -> None:
        self.call("PUT", "/default/obj.txt", b"hello world")
        status, headers, content = self.call("GET", "/default/obj.txt", HTTP_RANGE="bytes=6-")
        self.assertEqual(status, "206 Partial Content")
        self.assertEqual(content, b"world")
        self.assertEqual(headers["Content-Range"], "bytes 6-10/11")

    def test_range_when_backend_sends_whole_file(self) -> None:
        backend = RangeIgnoringBackend()
        app = S3Gateway(make_fs(backend), metadata_file=Path(self._tmp.name) / "other.json")
        backend.add_file("/", "obj.txt", b"hello world")
        self.app = app

        status, headers, content = self.call("GET", "/default/obj.txt", HTTP_RANGE="bytes=2-6")
        self.assertEqual(status, "206 Partial Content")
        self.assertEqual(content, b"llo w")
        self.assertEqual(headers["Content-Range"], "bytes 2-6/11")
        self.assertEqual(headers["Content-Length"], "5")

    def test_unsatisfiable_range(self) -> None:
        self.call("PUT", "/default/obj.txt", b"hello")
        status, _, _ = self.call("GET", "/default/obj.txt", HTTP_RANGE="bytes=10-20")
        self.assertEqual(status, "416 Range Not Satisfiable")

    def test_list(self) -> None:
        self.call("PUT", "/default/dir/a.txt", b"aaa")
        self.call("PUT", "/default/dir/sub/b.txt", b"bbb")
        self.call("PUT", "/default/top.txt", b"ttt")

        _, _, content = self.call("GET", "/default")
        for key in (b"dir/a.txt", b"dir/sub/b.txt", b"top.txt"):
            self.assertIn(b"<Key>" + key + b"</Key>", content)

        _, _, content = self.call("GET", "/default/", query="prefix=dir/&delimiter=/")
        self.assertIn(b"<Key>dir/a.txt</Key>", content)
        self.assertNotIn(b"<Key>dir/sub/b.txt</Key>", content)
        self.assertIn(b"<Prefix>dir/sub/</Prefix>", content)

    def test_list_missing_prefix(self) -> None:
        status, _, content = self.call("GET", "/default/", query="prefix=nope/")
        self.assertEqual(status, "200 OK")
        self.assertIn(b"<KeyCount>0</KeyCount>", content)

    def test_delete(self) -> None:
        self.call("PUT", "/default/obj.txt", b"hello")
        status, _, _ = self.call("DELETE", "/default/obj.txt")
        self.assertEqual(status, "204 No Content")
        status, _, content = self.call("GET", "/default/obj.txt")
        self.assertEqual(status, "404 Not Found")
        self.assertIn(b"NoSuchKey", content)

    def test_copy(self) -> None:
        self.call("PUT", "/default/src.txt", b"payload")
        status, _, content = self.call(
            "PUT", "/default/copies/dst.txt", HTTP_X_AMZ_COPY_SOURCE="/default/src.txt"
        )
        self.assertEqual(status, "200 OK")
        self.assertIn(b"CopyObjectResult", content)
        _, _, content = self.call("GET", "/default/copies/dst.txt")
        self.assertEqual(content, b"payload")

    def test_empty_put_is_rejected(self) -> None:
        status, _, content = self.call("PUT", "/default/empty.txt", b"")
        self.assertEqual(status, "400 Bad Request")
        self.assertEqual(self.backend.uploads, [])

    def test_unknown_bucket(self) -> None:
        status, _, content = self.call("GET", "/other/key")
        self.assertEqual(status, "404 Not Found")
        self.assertIn(b"NoSuchBucket", content)


if __name__ == "__main__":
    unittest.main()
