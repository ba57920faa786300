"""Content extraction and analysis."""

from sitecrawl.processing.models import (
    ContentAnalysis,
    ContentKind,
    ExtractedLink,
    LinkType,
    MediaItem,
    PageMetadata,
    ProcessedContent,
    ProcessingIssue,
    QualityAssessment,
    Sentiment,
)
from sitecrawl.processing.processor import ContentProcessor, fallback_content

__all__ = [
    "ContentAnalysis",
    "ContentKind",
    "ContentProcessor",
    "ExtractedLink",
    "LinkType",
    "MediaItem",
    "PageMetadata",
    "ProcessedContent",
    "ProcessingIssue",
    "QualityAssessment",
    "Sentiment",
    "fallback_content",
]
