"""
Text Extractors
═══════════════

One extractor per structured format. OCR formats (pdf, tiff, jpeg, png)
are handled by ``OcrExtractor`` in ocr.py, which implements the same
interface.

  CsvExtractor          csv-parser             rows serialized as a JSON array
  SpreadsheetExtractor  excel-parser:<parser>  bounded preview + full sheets in the store
  DocxExtractor         docx-parser            paragraphs + table cells, image count
  PlainTextExtractor    text-parser            decoded body

Contract
────────
  extract(job) never raises. A failure is reported as a placeholder text
  and a method tag ending in "-error"; downstream analysis always gets
  something textual. The only exception is the OCR poll timeout, which
  is fatal for the run.

Parsing libraries (openpyxl, python-docx) are synchronous; their work is
pushed to the default executor so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import docx
import openpyxl

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.pipeline.payload import (
    ExtractionDetails,
    ExtractionErrorInfo,
    JobPayload,
    SpreadsheetRefs,
    TextractResults,
)
from aseekbot.storage.base import ContentStore, ObjectRef, artifact_key

logger = logging.getLogger(__name__)

BID_SHEET_NAME = "Supplier Bid Upload"
PREVIEW_ROWS_PER_SHEET = 5


# ---------------------------------------------------------------------------
# Shared result type
# ---------------------------------------------------------------------------

@dataclass
class ExtractionOutput:
    """
    What an extractor hands back to the Extract stage.

    text      : extracted text, placeholder on failure (never None)
    method    : "csv-parser", "excel-parser:general-parser", "DetectDocumentText", ...
    warnings  : non-fatal notes from the parsing library
    """
    text:               str
    method:             str
    warnings:           list[str] = field(default_factory=list)
    textract_results:   TextractResults | None = None
    extraction_details: ExtractionDetails | None = None
    spreadsheet_refs:   SpreadsheetRefs | None = None
    extraction_error:   ExtractionErrorInfo | None = None
    image_count:        int | None = None

    @property
    def failed(self) -> bool:
        return self.method.endswith("-error")

    def to_updates(self) -> dict[str, Any]:
        """Payload updates keyed by JobPayload field name."""
        updates: dict[str, Any] = {
            "extracted_text":         self.text,
            "text_extraction_method": self.method,
            "extraction_warnings":    list(self.warnings),
        }
        optional = {
            "textract_results":   self.textract_results,
            "extraction_details": self.extraction_details,
            "spreadsheet_refs":   self.spreadsheet_refs,
            "extraction_error":   self.extraction_error,
            "image_count":        self.image_count,
        }
        updates.update({k: v for k, v in optional.items() if v is not None})
        return updates


def decode_text(body: bytes) -> str:
    """UTF-8 (BOM tolerated), falling back to latin-1 which never fails."""
    try:
        return body.decode("utf-8-sig")
    except UnicodeDecodeError:
        return body.decode("latin-1")


# ---------------------------------------------------------------------------
# Abstract extractor
# ---------------------------------------------------------------------------

class TextExtractor(ABC):
    """
    Base for all format extractors.

    Subclasses implement ``_extract``; the public ``extract`` wraps it so
    that any exception becomes a degraded ExtractionOutput.
    """

    #: method tag prefix, "<method>-error" on failure
    method: str = "extractor"
    #: human label used in placeholder texts
    label: str = "document"

    def __init__(self, store: ContentStore, config: Settings | None = None) -> None:
        self._store = store
        self._cfg = config or default_settings

    async def extract(self, job: JobPayload) -> ExtractionOutput:
        try:
            output = await self._extract(job)
        except Exception as exc:
            logger.error(
                "Extraction failed | doc=%s method=%s error=%s",
                job.document_id, self.method, exc, exc_info=True,
            )
            return ExtractionOutput(
                text=f"Error extracting {self.label} data: {exc}",
                method=f"{self.method}-error",
                extraction_error=ExtractionErrorInfo(message=str(exc), name=type(exc).__name__),
            )

        logger.info(
            "Extraction ok | doc=%s method=%s chars=%d",
            job.document_id, output.method, len(output.text),
        )
        return output

    @abstractmethod
    async def _extract(self, job: JobPayload) -> ExtractionOutput:
        """Format-specific extraction. May raise; ``extract`` absorbs it."""

    async def _read_source(self, job: JobPayload) -> bytes:
        return await self._store.get_bytes(job.source_ref)


def _in_executor(fn, *args):
    return asyncio.get_running_loop().run_in_executor(None, fn, *args)


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

class CsvExtractor(TextExtractor):
    method = "csv-parser"
    label = "CSV"

    async def _extract(self, job: JobPayload) -> ExtractionOutput:
        body = await self._read_source(job)
        reader = csv.DictReader(io.StringIO(decode_text(body)))
        rows = [dict(row) for row in reader]
        return ExtractionOutput(text=json.dumps(rows), method=self.method)


# ---------------------------------------------------------------------------
# Spreadsheet (xlsx)
# ---------------------------------------------------------------------------

# column-name heuristics for procurement fields, checked in this order
_FIELD_PATTERNS: dict[str, re.Pattern[str]] = {
    "quantities":  re.compile(r"qty|quantity", re.I),
    "prices":      re.compile(r"price|cost|amount|total|rate", re.I),
    "partNumbers": re.compile(r"part|sku|item\s*(no|number|#)|model", re.I),
    "dates":       re.compile(r"date|deadline|delivery", re.I),
    "vendors":     re.compile(r"vendor|supplier|manufacturer", re.I),
}


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass
class ParsedWorkbook:
    sheets: dict[str, list[dict[str, Any]]]
    headers: dict[str, list[str]]


def parse_workbook(body: bytes, parser_type: str = "general-parser") -> ParsedWorkbook:
    """
    Read every sheet (or only the bid sheet for the bid parser) into a list
    of row dicts keyed by the header row. Fully blank rows are skipped.
    """
    wb = openpyxl.load_workbook(io.BytesIO(body), read_only=True, data_only=True)
    try:
        if parser_type == "bid-parser":
            if BID_SHEET_NAME not in wb.sheetnames:
                raise ValueError(f"Required sheet '{BID_SHEET_NAME}' not found")
            names = [BID_SHEET_NAME]
        else:
            names = list(wb.sheetnames)

        sheets: dict[str, list[dict[str, Any]]] = {}
        headers: dict[str, list[str]] = {}
        for name in names:
            rows = wb[name].iter_rows(values_only=True)
            first = next(rows, None)
            if first is None:
                sheets[name], headers[name] = [], []
                continue
            header = [
                str(h).strip() if h not in (None, "") else f"Column{i + 1}"
                for i, h in enumerate(first)
            ]
            records = []
            for row in rows:
                if all(v in (None, "") for v in row):
                    continue
                records.append({h: _cell_value(v) for h, v in zip(header, row)})
            sheets[name], headers[name] = records, header
    finally:
        wb.close()

    return ParsedWorkbook(sheets=sheets, headers=headers)


def extract_procurement_fields(
    workbook: ParsedWorkbook, cap: int = 20
) -> dict[str, list[str]]:
    """
    Pull values out of columns whose header looks like a price, quantity,
    part number, date or vendor column. Each list holds at most ``cap``
    distinct values, first-seen order.
    """
    fields: dict[str, list[str]] = {name: [] for name in _FIELD_PATTERNS}
    for sheet, rows in workbook.sheets.items():
        for header in workbook.headers.get(sheet, []):
            target = next(
                (name for name, pattern in _FIELD_PATTERNS.items() if pattern.search(header)),
                None,
            )
            if target is None:
                continue
            bucket = fields[target]
            for row in rows:
                if len(bucket) >= cap:
                    break
                value = row.get(header, "")
                if value == "":
                    continue
                text = str(value)
                if text not in bucket:
                    bucket.append(text)
    return fields


def build_preview(workbook: ParsedWorkbook, limit_bytes: int = 20_000) -> str:
    parts: list[str] = []
    for sheet, rows in workbook.sheets.items():
        lines = [f"Sheet: {sheet}", "Headers: " + ", ".join(workbook.headers.get(sheet, []))]
        for idx, row in enumerate(rows[:PREVIEW_ROWS_PER_SHEET], start=1):
            cells = " | ".join(f"{k}: {v}" for k, v in row.items())
            lines.append(f"Row {idx}: {cells}")
        remaining = len(rows) - PREVIEW_ROWS_PER_SHEET
        if remaining > 0:
            lines.append(f"... {remaining} more rows")
        parts.append("\n".join(lines))

    preview = "\n\n".join(parts)
    if len(preview.encode("utf-8")) > limit_bytes:
        clipped = preview.encode("utf-8")[:limit_bytes].decode("utf-8", errors="ignore")
        preview = clipped + "\n... (preview truncated, full sheet data in S3)"
    return preview


class SpreadsheetExtractor(TextExtractor):
    method = "excel-parser"
    label = "Excel"

    async def _extract(self, job: JobPayload) -> ExtractionOutput:
        body = await self._read_source(job)
        workbook = await _in_executor(parse_workbook, body, job.parser_type)

        fields = extract_procurement_fields(workbook, self._cfg.procurement_field_cap)
        sheets_ref = await self._store.put_json(
            ObjectRef(bucket=job.source_ref.bucket, key=artifact_key(job.document_id, "xlsx-sheets")),
            workbook.sheets,
        )
        fields_ref = await self._store.put_json(
            ObjectRef(
                bucket=job.source_ref.bucket,
                key=artifact_key(job.document_id, "xlsx-procurement-fields"),
            ),
            fields,
        )

        return ExtractionOutput(
            text=build_preview(workbook, self._cfg.spreadsheet_preview_bytes),
            method=f"{self.method}:{job.parser_type}",
            spreadsheet_refs=SpreadsheetRefs(
                sheets_ref=sheets_ref,
                procurement_fields_ref=fields_ref,
                sheet_names=list(workbook.sheets),
                row_counts={name: len(rows) for name, rows in workbook.sheets.items()},
            ),
        )


# ---------------------------------------------------------------------------
# Word documents (docx)
# ---------------------------------------------------------------------------

@dataclass
class ParsedDocx:
    text: str
    image_count: int
    warnings: list[str]


def parse_docx(body: bytes) -> ParsedDocx:
    document = docx.Document(io.BytesIO(body))
    warnings: list[str] = []

    paragraphs = [p.text for p in document.paragraphs if p.text.strip()]
    table_lines: list[str] = []
    for table in document.tables:
        for row in table.rows:
            try:
                cells = [cell.text.strip() for cell in row.cells]
            except (IndexError, ValueError) as exc:
                warnings.append(f"Skipped unreadable table row: {exc}")
                continue
            if any(cells):
                table_lines.append(" | ".join(cells))

    if not paragraphs and not table_lines:
        warnings.append("Document body contains no text")

    image_count = sum(
        1 for rel in document.part.rels.values() if "image" in rel.reltype
    )

    text = "\n".join(paragraphs)
    if table_lines:
        text = (text + "\n\n" if text else "") + "\n".join(table_lines)
    return ParsedDocx(text=text, image_count=image_count, warnings=warnings)


class DocxExtractor(TextExtractor):
    method = "docx-parser"
    label = "DOCX"

    async def _extract(self, job: JobPayload) -> ExtractionOutput:
        body = await self._read_source(job)
        parsed = await _in_executor(parse_docx, body)

        output = ExtractionOutput(text=parsed.text, method=self.method, warnings=parsed.warnings)
        if job.use_case == "document-analysis":
            output.image_count = parsed.image_count
            if parsed.image_count:
                output.warnings.append(
                    f"Document contains {parsed.image_count} embedded image(s); image content is not analyzed"
                )
        return output


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

class PlainTextExtractor(TextExtractor):
    method = "text-parser"
    label = "text"

    async def _extract(self, job: JobPayload) -> ExtractionOutput:
        body = await self._read_source(job)
        return ExtractionOutput(text=decode_text(body), method=self.method)
