import asyncio
import unittest

from backend import logos
from backend.errors import UploadError
from backend.storage import InMemoryStorageClient


class LogoValidationTests(unittest.TestCase):
    def test_accepts_common_image_types(self):
        for filename, content_type in [
            ("a.png", "image/png"),
            ("a.JPG", "image/jpeg"),
            ("a.jpeg", "image/jpeg"),
            ("a.gif", "image/gif"),
        ]:
            logos.validate_logo(filename, content_type, 10)

    def test_rejects_mismatched_or_missing_type(self):
        for filename, content_type in [
            ("a.txt", "text/plain"),
            ("a.png", "application/pdf"),
            ("a.pdf", "image/png"),
            ("a.png", None),
        ]:
            with self.assertRaises(UploadError) as ctx:
                logos.validate_logo(filename, content_type, 10)
            self.assertEqual(ctx.exception.message, "Only image files are allowed")

    def test_rejects_oversized_file(self):
        with self.assertRaises(UploadError) as ctx:
            logos.validate_logo("a.png", "image/png", 101, max_bytes=100)
        self.assertEqual(ctx.exception.message, "File upload error: File too large")
        logos.validate_logo("a.png", "image/png", 100, max_bytes=100)


class _RecordingUpload:
    def __init__(self, data):
        self.data = data
        self.sizes = []

    async def read(self, size=-1):
        self.sizes.append(size)
        return self.data if size < 0 else self.data[:size]


class LogoReadTests(unittest.TestCase):
    def test_oversized_upload_is_read_only_past_the_limit(self):
        upload = _RecordingUpload(b"\x00" * 10_000)
        data = asyncio.run(logos.read_logo(upload, max_bytes=100))
        self.assertEqual(upload.sizes, [101])
        self.assertEqual(len(data), 101)
        with self.assertRaises(UploadError):
            logos.validate_logo("a.png", "image/png", len(data), max_bytes=100)

    def test_small_upload_is_read_whole(self):
        upload = _RecordingUpload(b"png")
        self.assertEqual(asyncio.run(logos.read_logo(upload, max_bytes=100)), b"png")


class LogoStorageTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorageClient()

    def test_storage_path_is_timestamped_and_sanitized(self):
        path = logos.logo_storage_path("../my logo?.png", now=1700000000.5)
        self.assertEqual(path, "community-logos/1700000000500-my_logo_.png")

    def test_store_logo_uploads_and_returns_url(self):
        path, url = logos.store_logo(self.storage, "logo.png", "image/png", b"png")
        self.assertTrue(path.startswith("community-logos/"))
        self.assertEqual(url, self.storage.public_url(path))
        self.assertEqual(self.storage.stored_objects[path], (b"png", "image/png"))

    def test_invalid_logo_is_not_uploaded(self):
        with self.assertRaises(UploadError):
            logos.store_logo(self.storage, "notes.txt", "text/plain", b"hi")
        self.assertEqual(self.storage.stored_objects, {})

    def test_legacy_path_from_url(self):
        self.assertEqual(
            logos.legacy_logo_path(
                "https://storage.googleapis.com/bucket/community-logos/123-logo.png"
            ),
            "community-logos/123-logo.png",
        )

    def test_delete_failure_is_logged(self):
        with self.assertLogs("backend.logos", level="ERROR"):
            logos.delete_logo_quietly(self.storage, "community-logos/missing.png")

    def test_delete_removes_blob(self):
        path, _ = logos.store_logo(self.storage, "logo.png", "image/png", b"png")
        logos.delete_logo_quietly(self.storage, path)
        self.assertNotIn(path, self.storage.stored_objects)


if __name__ == "__main__":
    unittest.main()
