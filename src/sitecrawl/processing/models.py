"""Result types produced by the content processor."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ContentKind(StrEnum):
    """How a response body is processed, derived from its content type."""

    HTML = "html"
    JSON = "json"
    PDF = "pdf"
    OTHER = "other"

    @classmethod
    def from_content_type(cls, content_type: str) -> "ContentKind":
        lowered = (content_type or "").lower()
        if "text/html" in lowered or "application/xhtml" in lowered:
            return cls.HTML
        if "application/pdf" in lowered:
            return cls.PDF
        if "json" in lowered:
            return cls.JSON
        return cls.OTHER


class LinkType(StrEnum):
    SOCIAL = "social"
    DOWNLOAD = "download"
    EMAIL = "email"
    NAVIGATION = "navigation"
    CONTENT = "content"


class MediaType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class Sentiment(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Keyword:
    word: str
    count: int


@dataclass
class ContentAnalysis:
    """Text statistics for a page's main content."""

    word_count: int = 0
    reading_time: int = 0
    language: str = "unknown"
    keywords: list[Keyword] = field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    readability_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "wordCount": self.word_count,
            "readingTime": self.reading_time,
            "language": self.language,
            "keywords": [{"word": k.word, "count": k.count} for k in self.keywords],
            "sentiment": self.sentiment.value,
            "readabilityScore": self.readability_score,
        }


@dataclass
class QualityAssessment:
    """Heuristic 0-100 page quality rating with the reasons behind it."""

    score: int = 0
    factors: dict[str, Any] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "factors": dict(self.factors), "issues": list(self.issues)}


@dataclass(frozen=True)
class MediaItem:
    type: MediaType
    url: str
    alt: str | None = None
    title: str | None = None
    width: str | None = None
    height: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "url": self.url}
        for key in ("alt", "title", "width", "height"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class ExtractedLink:
    url: str
    text: str
    type: LinkType
    is_internal: bool
    domain: str
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "text": self.text,
            "title": self.title,
            "isInternal": self.is_internal,
            "type": self.type.value,
            "domain": self.domain,
        }


@dataclass
class PageMetadata:
    """Document metadata; optional fields are None when the page lacks them."""

    title: str = ""
    description: str = ""
    author: str | None = None
    publish_date: str | None = None
    modified_date: str | None = None
    canonical: str | None = None
    robots: str | None = None
    viewport: str | None = None
    charset: str | None = None
    generator: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "publishDate": self.publish_date,
            "modifiedDate": self.modified_date,
            "canonical": self.canonical,
            "robots": self.robots,
            "viewport": self.viewport,
            "charset": self.charset,
            "generator": self.generator,
        }


@dataclass
class StructuredData:
    json_ld: list[Any] = field(default_factory=list)
    microdata: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    open_graph: dict[str, str] = field(default_factory=dict)
    twitter_cards: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonLd": self.json_ld,
            "microdata": self.microdata,
            "openGraph": self.open_graph,
            "twitterCards": self.twitter_cards,
        }


@dataclass
class JsonSummary:
    """Shape of a JSON document: top-level keys plus a one-level signature."""

    data: Any = None
    keys: list[str] = field(default_factory=list)
    raw: str = ""
    structure: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"data": self.data, "keys": self.keys, "raw": self.raw, "structure": self.structure}


@dataclass
class ExtractedData:
    main_content: str = ""
    structured_data: StructuredData = field(default_factory=StructuredData)
    json: JsonSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mainContent": self.main_content,
            "structuredData": self.structured_data.to_dict(),
        }
        if self.json is not None:
            data["json"] = self.json.to_dict()
        return data


@dataclass(frozen=True)
class ProcessingIssue:
    """A recovered failure recorded alongside the (degraded) result."""

    type: str
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "message": self.message, "timestamp": self.timestamp}


@dataclass
class ProcessedContent:
    """Everything the processor derived from one response body."""

    url: str
    content_type: str
    kind: ContentKind = ContentKind.OTHER
    extracted: ExtractedData = field(default_factory=ExtractedData)
    metadata: PageMetadata = field(default_factory=PageMetadata)
    analysis: ContentAnalysis = field(default_factory=ContentAnalysis)
    quality: QualityAssessment = field(default_factory=QualityAssessment)
    media: list[MediaItem] = field(default_factory=list)
    links: list[ExtractedLink] = field(default_factory=list)
    errors: list[ProcessingIssue] = field(default_factory=list)

    @property
    def quality_score(self) -> int:
        return self.quality.score

    @property
    def internal_links_count(self) -> int:
        return sum(1 for link in self.links if link.is_internal)

    @property
    def external_links_count(self) -> int:
        return sum(1 for link in self.links if not link.is_internal)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable view used in reporter payloads."""
        return {
            "url": self.url,
            "contentType": self.content_type,
            "extractedData": self.extracted.to_dict(),
            "metadata": self.metadata.to_dict(),
            "analysis": self.analysis.to_dict(),
            "quality": self.quality.to_dict(),
            "media": [m.to_dict() for m in self.media],
            "links": [link.to_dict() for link in self.links],
            "errors": [e.to_dict() for e in self.errors],
        }
