"""Text analysis and page quality scoring.

Word statistics, language detection (langdetect), keyword frequency,
lexical sentiment (AFINN word list), Flesch Reading Ease and a heuristic
0-100 quality score. Every function returns a defined value for empty
input.
"""

import json
import logging
import math
import re
from collections import Counter
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from afinn import Afinn
from langdetect import DetectorFactory, LangDetectException, detect

from sitecrawl.processing.models import (
    ContentAnalysis,
    JsonSummary,
    Keyword,
    PageMetadata,
    QualityAssessment,
    Sentiment,
)

if TYPE_CHECKING:
    from lxml.html import HtmlElement

logger = logging.getLogger(__name__)

# langdetect is probabilistic; fix the seed so results are repeatable
DetectorFactory.seed = 0

WORDS_PER_MINUTE = 200
DEFAULT_LANGUAGE = "en"
KEYWORD_LIMIT = 10
SENTIMENT_DEAD_ZONE = 2
QUALITY_BASELINE = 50

SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
NON_ALPHA_RE = re.compile(r"[^a-z]")
SILENT_SUFFIX_RE = re.compile(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$")
LEADING_Y_RE = re.compile(r"^y")
VOWEL_GROUP_RE = re.compile(r"[aeiouy]{1,2}")

STOP_WORDS: dict[str, frozenset[str]] = {
    "en": frozenset(
        """
        the a an is are was were be been being have has had do does did will would
        could should may might must shall can need dare ought used to of in for on
        with at by from as into through during before after above below between
        under again further then once here there when where why how all each few
        more most other some such no nor not only own same so than too very just
        but and or if because until while this that these those what which who
        whom whose it its i me my myself we our ours ourselves you your yours
        yourself yourselves he him his himself she her hers herself they them
        their theirs themselves about also am any
        """.split()
    ),
    "es": frozenset(
        """
        el la los las un una unos unas de en con por para que como pero si no es
        son fue era eran ser estar tiene tienen y o a del al lo
        """.split()
    ),
    "fr": frozenset(
        """
        le la les un une des de du en et est sont a ont avec pour que qui dans sur
        par pas ne ce cette ces il elle ils elles nous vous je tu ou mais si
        """.split()
    ),
    "de": frozenset(
        """
        der die das ein eine und ist sind war waren von mit zu auf in den dem des
        es er sie wir ihr ich du nicht als auch an aber oder wenn noch wie so nur
        nach bei aus um am im
        """.split()
    ),
}


@lru_cache(maxsize=1)
def _afinn() -> Afinn:
    return Afinn(language="en")


def detect_language(text: str) -> str:
    """Return the ISO 639-1 code of text's language, or "en" when unsure."""
    if not text or not text.strip():
        return DEFAULT_LANGUAGE
    try:
        return str(detect(text))
    except LangDetectException:
        return DEFAULT_LANGUAGE


def extract_keywords(words: list[str], language: str, limit: int = KEYWORD_LIMIT) -> list[Keyword]:
    """Top ``limit`` words by frequency, ignoring stop words and short tokens."""
    stop_words = STOP_WORDS.get(language, STOP_WORDS[DEFAULT_LANGUAGE])
    counts: Counter[str] = Counter()
    for word in words:
        token = NON_ALNUM_RE.sub("", word.lower())
        if len(token) > 2 and token not in stop_words:
            counts[token] += 1
    return [Keyword(word=w, count=c) for w, c in counts.most_common(limit)]


def classify_sentiment(text: str) -> Sentiment:
    """Lexical sentiment; scores within +/-2 count as neutral."""
    if not text.strip():
        return Sentiment.NEUTRAL
    score = _afinn().score(text)
    if score > SENTIMENT_DEAD_ZONE:
        return Sentiment.POSITIVE
    if score < -SENTIMENT_DEAD_ZONE:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def count_syllables(word: str) -> int:
    """Estimate syllables in an English word (minimum 1).

    Examples:
        >>> count_syllables("cat")
        1
        >>> count_syllables("reading")
        2
    """
    word = NON_ALPHA_RE.sub("", word.lower())
    if len(word) <= 3:
        return 1
    word = SILENT_SUFFIX_RE.sub("", word)
    word = LEADING_Y_RE.sub("", word)
    return max(1, len(VOWEL_GROUP_RE.findall(word)))


def calculate_readability(text: str) -> int:
    """Flesch Reading Ease clamped to [0, 100]; 0 for text without words.

    206.835 - 1.015 * (words / sentences) - 84.6 * (syllables / words)
    """
    words = text.split()
    sentences = [s for s in SENTENCE_SPLIT_RE.split(text) if s.strip()]
    if not words or not sentences:
        return 0

    syllables = sum(count_syllables(w) for w in words)
    score = (
        206.835
        - 1.015 * (len(words) / len(sentences))
        - 84.6 * (syllables / len(words))
    )
    if math.isnan(score):
        return 0
    return round(max(0.0, min(100.0, score)))


def analyze_content(text: str) -> ContentAnalysis:
    """Compute word statistics, language, keywords, sentiment and readability."""
    words = text.split()
    language = detect_language(text)
    return ContentAnalysis(
        word_count=len(words),
        reading_time=math.ceil(len(words) / WORDS_PER_MINUTE),
        language=language,
        keywords=extract_keywords(words, language),
        sentiment=classify_sentiment(text),
        readability_score=calculate_readability(text),
    )


def assess_quality(
    tree: "HtmlElement", metadata: PageMetadata, main_content: str
) -> QualityAssessment:
    """Score on-page content and SEO signals.

    Starts at 50 and adds or subtracts for title and description presence
    and length, content length, headings, image alt coverage and links. The
    result is clamped to [0, 100].

    Returns:
        QualityAssessment with score, the raw factors and human-readable issues
    """
    score = QUALITY_BASELINE
    issues: list[str] = []

    title = metadata.title.strip()
    if not title:
        score -= 10
        issues.append("Missing page title")
    elif len(title) < 10:
        score -= 5
        issues.append("Title too short")

    description = metadata.description.strip()
    if not description:
        score -= 10
        issues.append("Missing meta description")
    elif len(description) < 50:
        score -= 5
        issues.append("Meta description too short")

    content_length = len(main_content)
    if content_length < 300:
        score -= 15
        issues.append("Content too thin")
    elif content_length > 1000:
        score += 10

    headings = len(tree.cssselect("h1, h2, h3"))
    if headings:
        score += min(10, headings * 2)
    else:
        score -= 5
        issues.append("No headings found")

    images = len(tree.cssselect("img"))
    images_with_alt = len(tree.cssselect("img[alt]"))
    if images:
        score += 5
        if images_with_alt < images:
            issues.append("Some images missing alt attributes")

    links = len(tree.cssselect("a[href]"))
    if links:
        score += 5

    return QualityAssessment(
        score=max(0, min(100, score)),
        factors={
            "hasTitle": bool(title),
            "hasDescription": bool(description),
            "contentLength": content_length,
            "hasHeadings": headings > 0,
            "hasImages": images > 0,
            "imagesWithAlt": images_with_alt,
            "hasLinks": links > 0,
        },
        issues=issues,
    )


def process_json(content: str) -> JsonSummary:
    """Summarize a JSON document.

    Examples:
        >>> process_json('{"items": [{"name": "a"}]}').structure
        'Object with 1 keys'
        >>> process_json("not json").error
        'Invalid JSON'
    """
    raw = content[:500]
    try:
        data: Any = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return JsonSummary(raw=raw, error="Invalid JSON")

    if isinstance(data, dict):
        keys = [str(k) for k in data][:20]
        structure = f"Object with {len(data)} keys"
    elif isinstance(data, list):
        keys = [str(i) for i in range(len(data))][:20]
        structure = f"Array with {len(data)} items"
    else:
        keys = []
        structure = f"Scalar {type(data).__name__}"
    return JsonSummary(data=data, keys=keys, raw=raw, structure=structure)
