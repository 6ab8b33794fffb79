"""
Unit Tests: DocumentComparer
════════════════════════════
Tests for aseekbot/processing/comparer.py

Coverage:
  ✅ Shared vendors / common type reported as similarities
  ✅ Vendors unique to one document and differing types reported
  ✅ Recommendation names the lowest quoted price
  ✅ No prices anywhere → "Further review needed"
  ✅ Fewer than two documents → ComparisonError
  ✅ Companion without analysisResults → ComparisonError
"""

from __future__ import annotations

import pytest

from aseekbot.pipeline.exceptions import ComparisonError
from aseekbot.pipeline.payload import AnalysisResult, Entities
from aseekbot.processing.comparer import (
    ComparedDocument,
    DocumentComparer,
    lowest_price,
    price_value,
)


def _doc(doc_id: str, doc_type: str = "Vendor Proposal", vendors=(), prices=(), products=()) -> ComparedDocument:
    return ComparedDocument(
        document_id=doc_id,
        analysis=AnalysisResult(
            document_type=doc_type,
            entities=Entities(vendors=list(vendors), prices=list(prices), products=list(products)),
        ),
    )


@pytest.mark.unit
@pytest.mark.analysis
class TestDocumentComparer:

    def test_similarities_differences_and_recommendation(self):
        current = _doc("doc-a", vendors=["Acme Corp", "Globex Inc"], prices=["$1,200.00"])
        other = _doc("doc-b", vendors=["Acme Corp"], prices=["$950.00", "$2,000.00"])

        results = DocumentComparer().compare(current, [other])

        assert results.documents_compared == 2
        assert results.similarities == [
            "All documents mention vendors: Acme Corp",
            "All documents are classified as Vendor Proposal",
        ]
        assert "doc-a mentions vendors not found elsewhere: Globex Inc" in results.differences
        assert "Lowest quoted prices: doc-a $1,200.00, doc-b $950.00" in results.differences
        assert results.recommendation == (
            "doc-b appears to offer the best value based on the lowest quoted price ($950.00)"
        )

    def test_differing_types_reported(self):
        results = DocumentComparer().compare(_doc("a", "Invoice"), [_doc("b", "Contract Document")])

        assert results.differences[0] == "Document types differ: a (Invoice), b (Contract Document)"

    def test_no_prices_asks_for_review(self):
        results = DocumentComparer().compare(_doc("a"), [_doc("b"), _doc("c")])

        assert results.recommendation.startswith("Further review needed")
        assert results.documents_compared == 3

    def test_single_document_is_an_error(self):
        with pytest.raises(ComparisonError):
            DocumentComparer().compare(_doc("a"), [])

    def test_companion_from_payload_item(self):
        item = {
            "documentId": "doc-b",
            "analysisResults": {"documentType": "Invoice", "entities": {"prices": ["$3.00"]}},
        }

        companion = ComparedDocument.from_companion(item)

        assert companion.analysis.document_type == "Invoice"
        assert lowest_price(companion.analysis) == (3.0, "$3.00")

    def test_companion_without_analysis_is_an_error(self):
        with pytest.raises(ComparisonError):
            ComparedDocument.from_companion({"documentId": "doc-b"})


@pytest.mark.unit
@pytest.mark.analysis
@pytest.mark.parametrize(
    "raw, expected",
    [("$1,200.00", 1200.0), ("12 USD", 12.0), ("$ 7", 7.0), ("n/a", None)],
)
def test_price_value(raw, expected):
    assert price_value(raw) == expected
