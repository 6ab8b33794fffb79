"""
Document Processing Package
════════════════════════════

Everything a pipeline run does to a document's content:

  Text Extraction → Content Analysis → (Comparison) → Insights

Modules
───────
  extractor.py  CSV, spreadsheet, DOCX and plain-text extractors
  ocr.py        Textract job client + OCR strategy cascade (pdf/tiff/jpeg/png)
  analyzer.py   Rule-based content analyzer (pure)
  comparer.py   Multi-document comparison
  insights.py   Insight generation, optionally enriched by the Bedrock agent

Design principles
─────────────────
  • Every component is stateless and dependency-injected.
  • Extractors degrade instead of raising; only the OCR poll timeout is fatal.
  • Every step emits pipe-delimited log lines keyed by document id.
"""

from aseekbot.core.config import Settings
from aseekbot.processing.analyzer import ContentAnalyzer
from aseekbot.processing.comparer import ComparedDocument, DocumentComparer
from aseekbot.processing.extractor import (
    CsvExtractor,
    DocxExtractor,
    ExtractionOutput,
    PlainTextExtractor,
    SpreadsheetExtractor,
    TextExtractor,
)
from aseekbot.processing.insights import InsightGenerator
from aseekbot.processing.ocr import OcrExtractor, OcrJobClient, TextractJobClient
from aseekbot.storage.base import ContentStore


def build_extractors(
    store: ContentStore,
    ocr_client: OcrJobClient,
    config: Settings | None = None,
) -> dict[str, TextExtractor]:
    """File type → extractor, covering every supported type."""
    ocr = OcrExtractor(ocr_client, store, config)
    return {
        "pdf":  ocr,
        "tiff": ocr,
        "jpeg": ocr,
        "jpg":  ocr,
        "png":  ocr,
        "csv":  CsvExtractor(store, config),
        "xlsx": SpreadsheetExtractor(store, config),
        "docx": DocxExtractor(store, config),
        "txt":  PlainTextExtractor(store, config),
    }


__all__ = [
    "ComparedDocument",
    "ContentAnalyzer",
    "CsvExtractor",
    "DocumentComparer",
    "DocxExtractor",
    "ExtractionOutput",
    "InsightGenerator",
    "OcrExtractor",
    "OcrJobClient",
    "PlainTextExtractor",
    "SpreadsheetExtractor",
    "TextExtractor",
    "TextractJobClient",
    "build_extractors",
]
