"""Unit tests for URL helpers."""

import pytest

from sitecrawl.utils import domain_key, has_scheme, normalize_url


@pytest.mark.parametrize(
    "url,expected",
    [
        # Scheme defaulting
        ("example.com", "http://example.com/"),
        ("Example.com/docs/", "http://example.com/docs"),
        # Case normalization of scheme and host only
        ("HTTPS://EXAMPLE.COM/PATH", "https://example.com/PATH"),
        # Fragment removal
        ("https://example.com/#top", "https://example.com/"),
        ("https://example.com/page?q=1#top", "https://example.com/page?q=1"),
        # Trailing slash
        ("https://example.com", "https://example.com/"),
        ("https://example.com/a/b/", "https://example.com/a/b"),
        # Ports are kept
        ("http://example.com:8080/api", "http://example.com:8080/api"),
        # Surrounding whitespace
        ("  https://example.com/x  ", "https://example.com/x"),
    ],
)
def test_normalize_url(url: str, expected: str) -> None:
    """Test normalization of scheme, host, fragment and trailing slash."""
    assert normalize_url(url) == expected


@pytest.mark.parametrize(
    "url",
    ["", "   ", "ftp://example.com/", "file:///etc/passwd", "http://"],
)
def test_normalize_url_rejects(url: str) -> None:
    """Test empty, hostless and non-http URLs raise ValueError."""
    with pytest.raises(ValueError):
        normalize_url(url)


def test_has_scheme() -> None:
    """Test scheme detection."""
    assert has_scheme("https://example.com")
    assert has_scheme("ftp://example.com")
    assert not has_scheme("example.com")
    assert not has_scheme("example.com/path?next=http://x")


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://Example.com/x", "example.com"),
        ("https://user:pw@example.com/x", "example.com"),
        ("https://user@example.com:8443/", "example.com:8443"),
        ("http://[::1]:8080/", "[::1]:8080"),
    ],
)
def test_domain_key(url: str, expected: str) -> None:
    """Test the politeness and robots key keeps the port and drops userinfo."""
    assert domain_key(url) == expected
