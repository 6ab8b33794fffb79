"""
Result Store

Persists the outcome of a successful run:

  1. the result artifact, analysis-results/<documentId>/results.json:
       {documentId, userId, timestamp, insights, analysisResults,
        comparisonResults, processingComplete: true}
  2. summary fields on the document's status record (document type,
     extraction method, key findings count)

The COMPLETED transition itself, with resultLocation, is written by the
UpdateStatus stage so that resultLocation never appears on a record that
is still PROCESSING.
"""

from __future__ import annotations

import logging

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.pipeline.payload import JobPayload
from aseekbot.storage.base import ContentStore, ObjectRef, result_key
from aseekbot.storage.status_table import StatusTable, utc_now_iso

logger = logging.getLogger(__name__)


def build_result_document(payload: JobPayload) -> dict:
    event = payload.to_event()
    return {
        "documentId": payload.document_id,
        "userId": payload.user_id,
        "timestamp": utc_now_iso(),
        "insights": event.get("insights"),
        "analysisResults": event.get("analysisResults"),
        "comparisonResults": event.get("comparisonResults"),
        "processingComplete": True,
    }


class ResultStore:

    def __init__(
        self,
        store: ContentStore,
        document_table: StatusTable,
        config: Settings | None = None,
    ) -> None:
        self._store = store
        self._table = document_table
        self._cfg = config or default_settings

    async def save(self, payload: JobPayload) -> ObjectRef:
        """Write the artifact and the status summary; returns the artifact location."""
        location = ObjectRef(bucket=self._cfg.s3_bucket, key=result_key(payload.document_id))
        await self._store.put_json(location, build_result_document(payload))

        analysis = payload.analysis_results
        await self._table.update(
            payload.document_id,
            {
                "documentType": analysis.document_type if analysis else None,
                "keyFindingsCount": len(analysis.key_findings) if analysis else 0,
                "textExtractionMethod": payload.text_extraction_method,
            },
        )
        logger.info("Result stored | doc=%s key=%s", payload.document_id, location.uri)
        return location
