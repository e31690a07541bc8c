import unittest

from fakes import FakeBackend, make_client

from filestore_s3.errors import NoFileError, NoFolderError
from filestore_s3.models import File, Folder
from filestore_s3.paths import is_root, join_path, lookup, parse_path, split_segments


class TestParsePath(unittest.TestCase):
    def test_nested_path(self) -> None:
        self.assertEqual(parse_path("/some/full/path"), ("/some/full", "path"))

    def test_trailing_slash_is_ignored(self) -> None:
        self.assertEqual(parse_path("/some/full/path/"), ("/some/full", "path"))

    def test_top_level(self) -> None:
        self.assertEqual(parse_path("/something"), ("/", "something"))

    def test_root(self) -> None:
        self.assertEqual(parse_path("/"), ("/", ""))
        self.assertEqual(parse_path(""), ("/", ""))

    def test_split_segments(self) -> None:
        self.assertEqual(split_segments("/a/b//c/"), ["a", "b", "c"])
        self.assertEqual(split_segments("/"), [])

    def test_join_path(self) -> None:
        self.assertEqual(join_path("/", "a"), "/a")
        self.assertEqual(join_path("/a/", "b"), "/a/b")
        self.assertEqual(join_path("/a", ""), "/a")

    def test_is_root(self) -> None:
        self.assertTrue(is_root("/"))
        self.assertTrue(is_root(""))
        self.assertFalse(is_root("/a"))


class TestLookup(unittest.TestCase):
    def test_file_wins_over_folder_with_same_name(self) -> None:
        folder = Folder(
            name="Root",
            path="/",
            subfolders=[Folder(name="dup", path="/dup")],
            files=[File(id="F1", name="dup")],
        )
        entry = lookup(folder, "dup")
        self.assertIsInstance(entry, File)
        self.assertEqual(entry.id, "F1")

    def test_missing_name(self) -> None:
        self.assertIsNone(lookup(Folder(name="Root", path="/"), "nope"))


class TestResolve(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.backend.add_folder("/A")
        self.file_id = self.backend.add_file("/A", "x.txt", b"hello")
        self.client = make_client(self.backend)

    def test_resolves_file(self) -> None:
        entry = self.client.find("/A/x.txt")
        self.assertIsInstance(entry, File)
        self.assertEqual(entry.id, self.file_id)
        self.assertEqual(entry.size, 5)

    def test_resolves_folder(self) -> None:
        entry = self.client.find("/A")
        self.assertIsInstance(entry, Folder)
        self.assertEqual(entry.path, "/A")

    def test_resolves_root(self) -> None:
        entry = self.client.find("/")
        self.assertIsInstance(entry, Folder)
        self.assertEqual(entry.path, "/")

    def test_missing_name_raises_no_file(self) -> None:
        with self.assertRaises(NoFileError):
            self.client.find("/missing")

    def test_missing_parent_raises_no_folder(self) -> None:
        with self.assertRaises(NoFolderError):
            self.client.find("/nope/x.txt")

    def test_get_file_id(self) -> None:
        self.assertEqual(self.client.get_file_id("/A", "x.txt"), self.file_id)
        with self.assertRaises(NoFileError):
            self.client.get_file_id("/", "A")


if __name__ == "__main__":
    unittest.main()
