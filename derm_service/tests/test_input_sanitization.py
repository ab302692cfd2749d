"""Tests for input sanitization and image reference checks."""
from derm_service.input_sanitization import (
    check_image_url,
    has_supported_extension,
    host_is_allowed,
    path_extension,
    sanitize_list,
    sanitize_text,
)


class TestSanitizeText:
    """Test sanitize_text."""

    def test_strips_html(self):
        assert sanitize_text("<b>itchy</b> rash<script>alert(1)</script>") == "itchy rash"

    def test_removes_control_chars(self):
        assert sanitize_text("red\x00 patch\x07") == "red patch"

    def test_keeps_newlines(self):
        assert sanitize_text("line1\nline2") == "line1\nline2"

    def test_caps_length(self):
        assert len(sanitize_text("a" * 5000)) == 2000
        assert sanitize_text("abcdef", max_length=3) == "abc"

    def test_empty(self):
        assert sanitize_text(None) == ""
        assert sanitize_text("") == ""


class TestSanitizeList:

    def test_drops_empty_items(self):
        assert sanitize_list(["pain", "  ", "<i></i>", "swelling"]) == ["pain", "swelling"]

    def test_item_limit(self):
        assert len(sanitize_list([f"s{i}" for i in range(100)])) == 30


class TestExtensions:

    def test_path_extension(self):
        assert path_extension("c1/photos/IMG_001.JPG") == ".jpg"
        assert path_extension("c1/photos/noext") == ""
        assert path_extension("dir.v2/file") == ""

    def test_supported(self):
        for name in ["a.jpg", "a.jpeg", "a.png", "a.webp", "a.gif"]:
            assert has_supported_extension(name)

    def test_unsupported(self):
        assert not has_supported_extension("scan.tiff")
        assert not has_supported_extension("notes.pdf")

    def test_missing_extension(self):
        assert has_supported_extension("/object/123")
        assert not has_supported_extension("/object/123", required=True)


class TestCheckImageUrl:
    """Test check_image_url."""

    def test_valid(self):
        assert check_image_url("https://cdn.example.com/a.jpg") is None

    def test_http_rejected(self):
        assert "https" in check_image_url("http://cdn.example.com/a.jpg")

    def test_no_host(self):
        assert check_image_url("https:///a.jpg") is not None

    def test_loopback_and_private(self):
        for url in ["https://localhost/a.jpg", "https://127.0.0.1/a.jpg", "https://10.0.0.5/a.jpg",
                    "https://[::1]/a.jpg", "https://metadata.internal/a.jpg"]:
            assert check_image_url(url) is not None, url

    def test_allow_list(self):
        allowed = ("example.com",)
        assert check_image_url("https://cdn.example.com/a.jpg", allowed) is None
        assert check_image_url("https://example.com/a.jpg", allowed) is None
        assert "allowed host" in check_image_url("https://example.org/a.jpg", allowed)

    def test_host_suffix_is_not_subdomain(self):
        assert not host_is_allowed("badexample.com", ["example.com"])
