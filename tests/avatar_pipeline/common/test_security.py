"""Tests for URL and error message sanitization."""

from avatar_pipeline.common.security import sanitize_error_message, sanitize_url


class TestSanitizeUrl:
    def test_redacts_token(self):
        url = "https://private-user-images.githubusercontent.com/1/a.png?jwt=x&token=abc123"

        sanitized = sanitize_url(url)

        assert "abc123" not in sanitized
        assert "token=[REDACTED]" in sanitized
        assert "jwt=x" in sanitized

    def test_redacts_case_insensitive_keys(self):
        sanitized = sanitize_url("https://cdn.example.com/a.png?X-Amz-Signature=deadbeef")

        assert "deadbeef" not in sanitized

    def test_url_without_query_unchanged(self):
        url = "https://avatars.githubusercontent.com/u/123"

        assert sanitize_url(url) == url

    def test_empty_url(self):
        assert sanitize_url("") == ""


class TestSanitizeErrorMessage:
    def test_redacts_embedded_tokens(self):
        msg = "GET https://cdn.example.com/a.png?sig=secret123 failed: bearer abc.def"

        sanitized = sanitize_error_message(msg)

        assert "secret123" not in sanitized
        assert "abc.def" not in sanitized

    def test_truncates_long_messages(self):
        sanitized = sanitize_error_message("x" * 1000, max_length=100)

        assert len(sanitized) == 100
        assert sanitized.endswith("...")

    def test_empty_message(self):
        assert sanitize_error_message("") == ""
