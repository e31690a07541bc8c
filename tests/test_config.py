import unittest

from filestore_s3.config import Settings


class TestSettings(unittest.TestCase):
    def test_from_env(self) -> None:
        settings = Settings.from_env({
            "FILESTORE_API_URL": "https://files.example.test",
            "FILESTORE_USERNAME": "alice",
            "FILESTORE_PASSWORD": "secret",
            "FILESTORE_TWO_FACTOR": "123456",
            "FILESTORE_CACHE_DIR": "/tmp/cache",
            "FILESTORE_TIMEOUT": "12.5",
        })
        self.assertEqual(settings.api_url, "https://files.example.test")
        self.assertEqual(settings.username, "alice")
        self.assertEqual(settings.two_factor_code, "123456")
        self.assertEqual(settings.cache_dir, "/tmp/cache")
        self.assertIsNone(settings.scratch_dir)
        self.assertEqual(settings.timeout, 12.5)

    def test_defaults(self) -> None:
        settings = Settings.from_env({"FILESTORE_API_URL": "https://x"})
        self.assertEqual(settings.timeout, 60.0)
        self.assertEqual(settings.metadata_file, "~/.config/filestore-s3/metadata.json")
        self.assertIsNone(settings.cache_dir)

    def test_url_required(self) -> None:
        with self.assertRaises(ValueError):
            Settings.from_env({})

    def test_bad_timeout(self) -> None:
        with self.assertRaises(ValueError):
            Settings.from_env({"FILESTORE_API_URL": "https://x", "FILESTORE_TIMEOUT": "soon"})


if __name__ == "__main__":
    unittest.main()
