"""sitecrawl - polite, SSRF-safe site crawler with content analysis."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sitecrawl")
except PackageNotFoundError:
    __version__ = "dev"
