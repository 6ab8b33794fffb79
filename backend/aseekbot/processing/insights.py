"""
Insight Generator
═════════════════

Turns an AnalysisResult (and comparison results, for multi-document jobs)
into user-facing insights:

    {summary, keyPoints, recommendations, nextSteps,
     agentSummary?, sourceDocument, comparativeAnalysis?}

The rule-based insights are always computed. When an agent client is
configured the same facts are sent as a prompt; a JSON completion
overrides the matching fields, a plain-text completion is kept as
``agentSummary``. An agent failure is logged and the rule-based insights
stand. Any other failure returns FALLBACK_INSIGHTS.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from aseekbot.llm.agent import AgentClient
from aseekbot.pipeline.payload import AnalysisResult, ComparisonResults

logger = logging.getLogger(__name__)

BASE_RECOMMENDATIONS = (
    "Compare pricing with industry benchmarks to ensure competitive rates",
    "Verify product specifications against your requirements",
    "Request additional documentation for missing information",
    "Confirm delivery and implementation timeframes before proceeding",
)

FALLBACK_INSIGHTS: dict[str, Any] = {
    "summary": "Error generating detailed insights",
    "keyPoints": [
        "Document processing encountered some issues",
        "Basic analysis was completed",
        "Manual review recommended",
    ],
    "recommendations": ["Review document manually", "Reprocess if issues persist"],
    "nextSteps": "Contact support if problems continue",
}

_OVERRIDABLE = ("summary", "keyPoints", "recommendations", "nextSteps")


def _summary(doc_type: str, vendors: list[str], products: list[str], prices: list[str]) -> str:
    summary = f"This {doc_type} "
    if vendors:
        summary += f"from {vendors[0]} "
    if products:
        summary += f"relates to {len(products)} product{'s' if len(products) != 1 else ''} "
    summary += "with pricing information" if prices else "requires further review"
    return summary


def _key_points(sentiment: str, prices: list[str], word_count: int) -> list[str]:
    points = []
    if sentiment == "positive":
        points.append("Document language is generally positive, suggesting a favorable proposal")
    elif sentiment == "negative":
        points.append("Document contains negative language that may indicate issues or concerns")
    else:
        points.append("Document has a neutral tone, typical for formal business communications")

    if prices:
        points.append("Pricing details are explicitly mentioned and should be reviewed carefully")
    else:
        points.append("No explicit pricing was found, additional inquiry may be needed")

    if word_count > 2000:
        points.append("Document is comprehensive with detailed information")
    elif word_count > 500:
        points.append("Document provides moderate level of detail")
    else:
        points.append("Document is brief and may lack necessary details")
    return points


def _recommendations(doc_type: str) -> list[str]:
    recs = list(BASE_RECOMMENDATIONS)
    lowered = doc_type.lower()
    if "proposal" in lowered or "quote" in lowered:
        recs.append("Evaluate the proposal against competitive offerings")
        recs.append("Check warranty terms and support conditions")
    if "contract" in lowered:
        recs.append("Have legal team review terms and conditions")
        recs.append("Ensure SLA terms meet business requirements")
    return recs


def _next_steps(vendors: list[str], prices: list[str]) -> str:
    if vendors and prices:
        return f"Schedule meeting with {vendors[0]} to discuss pricing and specifications"
    if vendors:
        return f"Contact {vendors[0]} for more information"
    return "Gather additional vendor information and specifications"


def build_prompt(analysis: AnalysisResult, document_id: str, file_type: str) -> str:
    entities = analysis.entities
    return (
        "Generate actionable business insights for a document with the following details:\n\n"
        f"Document Type: {analysis.document_type}\n"
        f"Document ID: {document_id}\n"
        f"File Type: {file_type}\n"
        f"Sentiment: {analysis.sentiment}\n\n"
        f"Key Findings: {json.dumps(analysis.key_findings)}\n\n"
        "Entities:\n"
        f"- Vendors: {json.dumps(entities.vendors)}\n"
        f"- Products: {json.dumps(entities.products)}\n"
        f"- Prices: {json.dumps(entities.prices)}\n\n"
        "Please provide:\n"
        "1. A concise summary of the document\n"
        "2. Key points to consider\n"
        "3. Specific recommendations based on the document content\n"
        "4. Suggested next steps\n"
    )


class InsightGenerator:

    def __init__(self, agent: AgentClient | None = None) -> None:
        self._agent = agent

    async def generate(
        self,
        analysis: AnalysisResult,
        document_id: str,
        file_type: str,
        comparison: ComparisonResults | None = None,
    ) -> dict[str, Any]:
        try:
            insights = self.rule_based(analysis)
            if self._agent is not None:
                insights.update(await self._agent_insights(analysis, document_id, file_type))
        except Exception as exc:
            logger.error("Insight generation failed | doc=%s error=%s", document_id, exc, exc_info=True)
            return {**FALLBACK_INSIGHTS, "error": str(exc)}

        insights["sourceDocument"] = {"type": file_type, "documentId": document_id}
        if comparison is not None:
            insights["comparativeAnalysis"] = {
                "bestOption": comparison.recommendation or "Further analysis needed to determine best option",
                "keyDifferences": list(comparison.differences),
                "similarities": list(comparison.similarities),
            }
        return insights

    def rule_based(self, analysis: AnalysisResult) -> dict[str, Any]:
        entities = analysis.entities
        return {
            "summary": _summary(analysis.document_type, entities.vendors, entities.products, entities.prices),
            "keyPoints": _key_points(analysis.sentiment, entities.prices, analysis.metadata.word_count),
            "recommendations": _recommendations(analysis.document_type),
            "nextSteps": _next_steps(entities.vendors, entities.prices),
        }

    async def _agent_insights(
        self,
        analysis: AnalysisResult,
        document_id: str,
        file_type: str,
    ) -> dict[str, Any]:
        """Overrides from the agent; empty when the agent fails or says nothing."""
        try:
            reply = await self._agent.invoke(
                build_prompt(analysis, document_id, file_type), session_id=document_id
            )
        except Exception as exc:
            logger.warning(
                "Agent insights unavailable, using rule-based insights | doc=%s error=%s",
                document_id, exc,
            )
            return {}

        completion = reply.completion.strip()
        if not completion:
            return {}
        try:
            parsed = json.loads(completion)
        except ValueError:
            return {"agentSummary": completion}
        if not isinstance(parsed, dict):
            return {"agentSummary": completion}
        return {k: parsed[k] for k in _OVERRIDABLE if parsed.get(k)}
