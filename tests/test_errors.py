import unittest

from filestore_s3.errors import (
    AuthError,
    FileStoreError,
    NoFileError,
    NoFolderError,
    NotFoundError,
    RefreshExpiredError,
    TokenError,
    UnauthorizedError,
    UnexpectedStatusError,
    status_error,
)


class TestErrors(unittest.TestCase):
    def test_hierarchy(self) -> None:
        self.assertTrue(issubclass(NoFileError, NotFoundError))
        self.assertTrue(issubclass(NoFolderError, NotFoundError))
        self.assertTrue(issubclass(UnauthorizedError, AuthError))
        self.assertTrue(issubclass(RefreshExpiredError, TokenError))
        self.assertTrue(issubclass(TokenError, FileStoreError))

    def test_details_and_cause(self) -> None:
        cause = ValueError("boom")
        err = FileStoreError("failed", details={"path": "/a"}, cause=cause)
        self.assertEqual(str(err), "failed")
        self.assertEqual(err.details, {"path": "/a"})
        self.assertIs(err.cause, cause)
        self.assertEqual(FileStoreError("x").details, {})

    def test_status_error_401(self) -> None:
        err = status_error("get folders", 401, endpoint="api/v1/filestorage/folders")
        self.assertIsInstance(err, UnauthorizedError)
        self.assertEqual(err.details["status_code"], 401)
        self.assertEqual(err.details["operation"], "get folders")

    def test_status_error_other(self) -> None:
        err = status_error("delete files", 503)
        self.assertIsInstance(err, UnexpectedStatusError)
        self.assertEqual(err.status_code, 503)
        self.assertEqual(err.details["status_code"], 503)
        self.assertIn("503", str(err))


if __name__ == "__main__":
    unittest.main()
