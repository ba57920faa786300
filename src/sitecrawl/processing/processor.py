"""Content processor.

Turns a fetched body into ProcessedContent. HTML goes through a staged
pipeline (structured data, main content, analysis, media, links, metadata,
quality); each stage is isolated so one failing stage leaves its default in
place and records a warning. JSON is summarized; PDF is refused explicitly.
process() never raises.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from lxml import etree

from sitecrawl.exceptions import ProcessingError
from sitecrawl.processing.analysis import analyze_content, assess_quality, process_json
from sitecrawl.processing.extraction import (
    extract_links,
    extract_main_content,
    extract_media,
    extract_metadata,
    extract_structured_data,
    parse_html,
)
from sitecrawl.processing.models import (
    ContentAnalysis,
    ContentKind,
    ExtractedData,
    ProcessedContent,
    ProcessingIssue,
    QualityAssessment,
)

if TYPE_CHECKING:
    from lxml.html import HtmlElement

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContentProcessor:
    """Extract and analyze page content.

    Example:
        >>> processor = ContentProcessor()
        >>> result = processor.process("<html>...</html>", "https://example.com/", "text/html")
        >>> result.quality_score
    """

    def process(self, content: str, url: str, content_type: str) -> ProcessedContent:
        """Process a response body.

        Args:
            content: Decoded response body
            url: Final URL of the response (base for relative links)
            content_type: Response Content-Type header

        Returns:
            ProcessedContent; on a pipeline-level failure every field keeps
            its default and ``errors`` holds a ``processing_error`` entry
        """
        kind = ContentKind.from_content_type(content_type)
        result = ProcessedContent(url=url, content_type=content_type, kind=kind)
        try:
            match kind:
                case ContentKind.HTML:
                    self._process_html(result, content)
                case ContentKind.JSON:
                    self._process_json(result, content)
                case ContentKind.PDF:
                    result.errors.append(
                        ProcessingIssue(
                            type="unsupported",
                            message="PDF processing is not supported",
                        )
                    )
                case ContentKind.OTHER:
                    logger.debug(f"No processor for content type {content_type!r} ({url})")
        except Exception as e:
            logger.warning(f"Content processing failed for {url}: {e}")
            errors = [
                *result.errors,
                ProcessingIssue(type="processing_error", message=str(e) or type(e).__name__),
            ]
            result = ProcessedContent(url=url, content_type=content_type, kind=kind, errors=errors)
        return result

    def _stage(
        self,
        result: ProcessedContent,
        name: str,
        func: Callable[[], T],
        fallback: T,
    ) -> T:
        try:
            return func()
        except Exception as e:
            logger.warning(f"Error extracting {name} from {result.url}: {e}")
            result.errors.append(ProcessingIssue(type=f"{name}_error", message=str(e)))
            return fallback

    def _process_html(self, result: ProcessedContent, content: str) -> None:
        try:
            tree: HtmlElement = parse_html(content)
        except (ValueError, etree.ParserError) as e:
            raise ProcessingError(f"Unparseable HTML document: {e}") from e
        url = result.url

        structured = self._stage(
            result, "structured_data", lambda: extract_structured_data(tree), None
        )
        main_content = self._stage(result, "main_content", lambda: extract_main_content(tree), "")
        result.extracted = ExtractedData(main_content=main_content)
        if structured is not None:
            result.extracted.structured_data = structured

        result.analysis = self._stage(
            result, "analysis", lambda: analyze_content(main_content), ContentAnalysis()
        )
        result.media = self._stage(result, "media", lambda: extract_media(tree, url), [])
        result.links = self._stage(result, "links", lambda: extract_links(tree, url), [])
        result.metadata = self._stage(
            result, "metadata", lambda: extract_metadata(tree), result.metadata
        )
        result.quality = self._stage(
            result,
            "quality",
            lambda: assess_quality(tree, result.metadata, main_content),
            QualityAssessment(score=0, issues=["Quality assessment failed"]),
        )

    def _process_json(self, result: ProcessedContent, content: str) -> None:
        summary = process_json(content)
        result.extracted = ExtractedData(json=summary)
        if summary.error is not None:
            result.errors.append(ProcessingIssue(type="json_error", message=summary.error))


def fallback_content(url: str, content_type: str, error: Exception) -> ProcessedContent:
    """Degraded result used when the processor itself cannot be run."""
    return ProcessedContent(
        url=url,
        content_type=content_type,
        kind=ContentKind.from_content_type(content_type),
        analysis=ContentAnalysis(language="unknown"),
        quality=QualityAssessment(score=0, issues=["Processing failed"]),
        errors=[ProcessingIssue(type="processor_error", message=str(error))],
    )
