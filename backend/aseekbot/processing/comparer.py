"""
Document Comparer
═════════════════

Compares the current document's analysis with the companion documents that
came with a multi-document job. Rule-based and deterministic:

  similarities    vendors / products shared by every document, common type
  differences     differing document types, vendors unique to one document,
                  lowest quoted price per document
  recommendation  the document with the lowest quoted price, or a request
                  for further review when no document quotes a price

Fewer than two documents is a fatal ComparisonError.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from aseekbot.pipeline.exceptions import ComparisonError
from aseekbot.pipeline.payload import AnalysisResult, ComparisonResults

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparedDocument:
    document_id: str
    analysis:    AnalysisResult

    @classmethod
    def from_companion(cls, item: dict[str, Any]) -> "ComparedDocument":
        document_id = item.get("documentId") or item.get("document_id")
        analysis = item.get("analysisResults") or item.get("analysis_results")
        if not document_id or not analysis:
            raise ComparisonError("Companion document is missing documentId or analysisResults")
        return cls(document_id=document_id, analysis=AnalysisResult.model_validate(analysis))


def price_value(raw: str) -> float | None:
    digits = re.sub(r"[^\d.]", "", raw)
    try:
        return float(digits)
    except ValueError:
        return None


def lowest_price(analysis: AnalysisResult) -> tuple[float, str] | None:
    parsed = [(price_value(raw), raw) for raw in analysis.entities.prices]
    valued = [(value, raw) for value, raw in parsed if value is not None]
    return min(valued, key=lambda item: item[0]) if valued else None


class DocumentComparer:

    def compare(
        self,
        current: ComparedDocument,
        companions: list[ComparedDocument],
    ) -> ComparisonResults:
        documents = [current, *companions]
        if len(documents) < 2:
            raise ComparisonError("At least two documents are required for comparison")

        similarities: list[str] = []
        differences: list[str] = []

        vendor_sets = {d.document_id: set(d.analysis.entities.vendors) for d in documents}
        product_sets = [set(d.analysis.entities.products) for d in documents]

        shared_vendors = sorted(set.intersection(*vendor_sets.values()))
        if shared_vendors:
            similarities.append(f"All documents mention vendors: {', '.join(shared_vendors)}")
        shared_products = sorted(set.intersection(*product_sets))
        if shared_products:
            similarities.append(f"All documents reference products: {', '.join(shared_products)}")

        types = {d.analysis.document_type for d in documents}
        if len(types) == 1:
            similarities.append(f"All documents are classified as {types.pop()}")
        else:
            differences.append(
                "Document types differ: "
                + ", ".join(f"{d.document_id} ({d.analysis.document_type})" for d in documents)
            )

        for doc_id, vendors in vendor_sets.items():
            others = set().union(*(v for other, v in vendor_sets.items() if other != doc_id))
            unique = sorted(vendors - others)
            if unique:
                differences.append(f"{doc_id} mentions vendors not found elsewhere: {', '.join(unique)}")

        priced = [(d.document_id, lowest_price(d.analysis)) for d in documents]
        priced = [(doc_id, low) for doc_id, low in priced if low is not None]
        if len(priced) > 1:
            differences.append(
                "Lowest quoted prices: " + ", ".join(f"{doc_id} {raw}" for doc_id, (_, raw) in priced)
            )

        if priced:
            best_id, (_, best_raw) = min(priced, key=lambda item: item[1][0])
            recommendation = (
                f"{best_id} appears to offer the best value based on the lowest quoted price ({best_raw})"
            )
        else:
            recommendation = "Further review needed: no comparable pricing was found across the documents"

        logger.info(
            "Comparison done | doc=%s documents=%d similarities=%d differences=%d",
            current.document_id, len(documents), len(similarities), len(differences),
        )
        return ComparisonResults(
            similarities=similarities,
            differences=differences,
            recommendation=recommendation,
            documents_compared=len(documents),
        )
