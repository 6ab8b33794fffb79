"""
Content Analyzer
════════════════

Rule-based analysis of extracted text. Pure: the same input always
produces the same AnalysisResult, and no I/O happens here (the Analyze
stage loads any spreadsheet procurement fields before calling in).

  documentType   first matching keyword rule wins
  keywords       stop-word filtered frequency ranking, ties in first-seen order
  entities       regex families over the original-case text, deduplicated,
                 first-seen order; spreadsheet fields override vendors,
                 prices and dates when present
  sentiment      positive/negative term counts with a 1.5x margin

analyze() never raises. An internal failure yields an "Unknown (Error)"
result so the run can still reach the Store stage.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Iterable

from aseekbot.pipeline.payload import AnalysisMetadata, AnalysisResult, Entities

logger = logging.getLogger(__name__)

CONFIDENCE_SCORE = 0.85
SPREADSHEET_FILE_TYPES = frozenset({"csv", "xlsx"})

# ordered: first match wins
_DOCUMENT_TYPE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("proposal", "quote"), "Vendor Proposal"),
    (("contract", "agreement"), "Contract Document"),
    (("invoice", "payment"), "Invoice"),
    (("specification", "spec ", "specs"), "Technical Specification"),
    (("rfp", "request for proposal"), "RFP Document"),
]

STOP_WORDS = frozenset(
    {"the", "and", "a", "to", "in", "of", "for", "is", "on", "that", "this", "with", "as", "by"}
)

PROCUREMENT_TERMS = (
    "purchase", "vendor", "supplier", "bid", "quote", "proposal",
    "contract", "price", "cost", "rfp", "rfq",
)

VENDOR_PATTERNS = [
    re.compile(r"([A-Z][a-z]+ )?[A-Z][a-z]+ (Inc|LLC|Ltd|Corp|Corporation)"),
    re.compile(r"([A-Z][a-z]+ )?Technologies"),
    re.compile(r"([A-Z][a-z]+ )?Systems"),
]

PRICE_PATTERN = re.compile(r"\$\s?[\d,]+(\.\d{2})?|\d{1,3}(,\d{3})*(\.\d{2})?\s(USD|dollars)")

DATE_PATTERNS = [
    re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}"),
    re.compile(r"\d{1,2}-\d{1,2}-\d{2,4}"),
    re.compile(r"[A-Z][a-z]{2,8} \d{1,2},? \d{4}"),
    re.compile(r"Q[1-4] \d{4}"),
]

PRODUCT_PATTERNS = [
    re.compile(r"[A-Z][a-z]+ Rack [A-Z0-9\-]+"),
    re.compile(r"[A-Z][a-z]+ Server [A-Z0-9\-]+"),
    re.compile(r"[A-Z][a-z]+ (Router|Switch|Firewall) [A-Z0-9\-]+"),
    re.compile(r"[A-Z][a-z]+ (Storage|Array) [A-Z0-9\-]+"),
    re.compile(r"[A-Z][a-z]+ (Cooling|UPS|PDU) [A-Z0-9\-]+"),
]

POSITIVE_TERMS = (
    "excellent", "good", "best", "great", "high quality",
    "reliable", "recommended", "positive", "optimal", "efficient",
)
NEGATIVE_TERMS = (
    "poor", "bad", "worst", "issues", "problems",
    "concerns", "delay", "expensive", "overpriced", "unreliable",
)
_POSITIVE_RE = [re.compile(rf"\b{re.escape(t)}\b", re.I) for t in POSITIVE_TERMS]
_NEGATIVE_RE = [re.compile(rf"\b{re.escape(t)}\b", re.I) for t in NEGATIVE_TERMS]


# ---------------------------------------------------------------------------
# Rule helpers
# ---------------------------------------------------------------------------

def classify_document(lower_text: str, file_type: str = "") -> str:
    for needles, label in _DOCUMENT_TYPE_RULES:
        if any(n in lower_text for n in needles):
            return label
    if file_type.lower() in SPREADSHEET_FILE_TYPES:
        return "Spreadsheet Data"
    return "Procurement Document"


def extract_keywords(lower_text: str) -> list[str]:
    words = [w for w in re.split(r"\W+", lower_text) if len(w) > 2 and w not in STOP_WORDS]
    counts = Counter(words)
    # sorted() is stable and Counter keeps insertion order
    return [word for word, _ in sorted(counts.items(), key=lambda kv: kv[1], reverse=True)]


def is_procurement_related(lower_text: str) -> bool:
    return any(term in lower_text for term in PROCUREMENT_TERMS)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _match_all(patterns: list[re.Pattern[str]], text: str) -> list[str]:
    return _unique(m.group(0) for p in patterns for m in p.finditer(text))


def extract_vendors(text: str) -> list[str]:
    return _match_all(VENDOR_PATTERNS, text)


def extract_prices(text: str) -> list[str]:
    return _unique(m.group(0) for m in PRICE_PATTERN.finditer(text))


def extract_dates(text: str) -> list[str]:
    return _match_all(DATE_PATTERNS, text)


def extract_products(text: str) -> list[str]:
    return _match_all(PRODUCT_PATTERNS, text)


def score_sentiment(text: str) -> str:
    positive = sum(len(p.findall(text)) for p in _POSITIVE_RE)
    negative = sum(len(p.findall(text)) for p in _NEGATIVE_RE)
    if positive > negative * 1.5:
        return "positive"
    if negative > positive * 1.5:
        return "negative"
    return "neutral"


def _head(values: list[str], n: int) -> str:
    return ", ".join(values[:n]) + ("..." if len(values) > n else "")


def build_key_findings(
    document_type: str,
    vendors: list[str],
    prices: list[str],
    dates: list[str],
    is_procurement: bool,
) -> list[str]:
    findings = [f"This document appears to be a {document_type.lower()}"]
    if vendors:
        findings.append(f"Mentions vendors: {_head(vendors, 3)}")
    if prices:
        findings.append(f"Contains pricing information: {_head(prices, 3)}")
    if dates:
        findings.append(f"References dates: {_head(dates, 2)}")
    if is_procurement:
        findings.append("Contains procurement-related terminology")
    return findings


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class ContentAnalyzer:
    """Stateless; one instance can be shared by every run."""

    def analyze(
        self,
        text: str,
        file_type: str = "",
        procurement_fields: dict[str, list[str]] | None = None,
    ) -> AnalysisResult:
        try:
            return self._analyze(text, file_type, procurement_fields or {})
        except Exception as exc:
            logger.error("Content analysis failed | error=%s", exc, exc_info=True)
            return error_result(str(exc))

    def _analyze(
        self,
        text: str,
        file_type: str,
        procurement_fields: dict[str, list[str]],
    ) -> AnalysisResult:
        if not text:
            raise ValueError("No text content provided for analysis")

        lower = text.lower()
        document_type = classify_document(lower, file_type)
        is_procurement = is_procurement_related(lower)

        vendors = procurement_fields.get("vendors") or extract_vendors(text)
        prices = procurement_fields.get("prices") or extract_prices(text)
        dates = procurement_fields.get("dates") or extract_dates(text)
        products = extract_products(text)

        return AnalysisResult(
            document_type=document_type,
            key_findings=build_key_findings(document_type, vendors, prices, dates, is_procurement),
            entities=Entities(vendors=list(vendors), products=products, prices=list(prices)),
            sentiment=score_sentiment(lower),
            confidence_score=CONFIDENCE_SCORE,
            metadata=AnalysisMetadata(
                word_count=len(text.split()),
                keywords=extract_keywords(lower)[:10],
                dates=list(dates),
                is_procurement_document=is_procurement,
            ),
        )


def error_result(message: str) -> AnalysisResult:
    return AnalysisResult(
        document_type="Unknown (Error)",
        key_findings=[f"Error analyzing document: {message}"],
        sentiment="neutral",
        confidence_score=0.0,
        error=message,
    )
