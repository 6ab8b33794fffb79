"""
Workflow Orchestrator
═════════════════════

Runs one document through the stage graph:

    Init → Validate → Extract → Analyze → [Compare] → GenerateInsights → Store → UpdateStatus
                                             │
                       only when isMultipleDocuments

    any stage before UpdateStatus raises → HandleError → UpdateStatus (FAILED)

``next_stage`` is the whole transition table; the run loop only executes
stages and follows it. Stages are not retried here. Retry and backoff
live inside the OCR client and the agent client.

After each successful stage the stage's progress is written to the
document status table. A failed progress write is logged and the run
continues; the terminal UpdateStatus write is the only status write whose
failure propagates.
"""

from __future__ import annotations

import logging
from typing import Awaitable

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.llm.agent import AgentClient, BedrockAgentClient
from aseekbot.pipeline.exceptions import PayloadContractError
from aseekbot.pipeline.payload import JobPayload
from aseekbot.pipeline.results import ResultStore
from aseekbot.pipeline.stages import (
    AnalyzeStage,
    CompareStage,
    ExtractStage,
    GenerateInsightsStage,
    HandleErrorStage,
    InitStage,
    Stage,
    StageName,
    StoreStage,
    UpdateStatusStage,
    ValidateStage,
)
from aseekbot.processing import (
    ContentAnalyzer,
    DocumentComparer,
    InsightGenerator,
    OcrJobClient,
    TextractJobClient,
    build_extractors,
)
from aseekbot.services.status import StatusRecorder
from aseekbot.storage.base import ContentStore
from aseekbot.storage.s3 import S3ContentStore
from aseekbot.storage.status_table import DynamoStatusTable, StatusTable

logger = logging.getLogger(__name__)

_LINEAR: dict[StageName, StageName] = {
    StageName.INIT:              StageName.VALIDATE,
    StageName.VALIDATE:          StageName.EXTRACT,
    StageName.EXTRACT:           StageName.ANALYZE,
    StageName.COMPARE:           StageName.GENERATE_INSIGHTS,
    StageName.GENERATE_INSIGHTS: StageName.STORE,
    StageName.STORE:             StageName.UPDATE_STATUS,
    StageName.HANDLE_ERROR:      StageName.UPDATE_STATUS,
}


def next_stage(
    current: StageName,
    payload: JobPayload,
    failed: bool = False,
) -> StageName | None:
    """The stage after ``current``; None once UpdateStatus has run."""
    if current is StageName.UPDATE_STATUS:
        return None
    if failed and current is not StageName.HANDLE_ERROR:
        return StageName.HANDLE_ERROR
    if current is StageName.ANALYZE:
        return StageName.COMPARE if payload.is_multiple_documents else StageName.GENERATE_INSIGHTS
    return _LINEAR[current]


class WorkflowOrchestrator:

    def __init__(
        self,
        stages: list[Stage],
        recorder: StatusRecorder,
        error_stage: HandleErrorStage | None = None,
    ) -> None:
        self._stages = {stage.name: stage for stage in stages}
        self._recorder = recorder
        self._error_stage = error_stage or HandleErrorStage()

    async def run(self, payload: JobPayload) -> JobPayload:
        """Drive the payload to UpdateStatus and return the final payload."""
        doc = payload.document_id
        logger.info("Run start | doc=%s type=%s multi=%s", doc, payload.file_type, payload.is_multiple_documents)

        current: StageName | None = StageName.INIT
        error: Exception | None = None
        failed_at: StageName | None = None

        while current is not None:
            if current is StageName.HANDLE_ERROR:
                payload = payload.merge(self._error_stage.build(error, failed_at))
                current = next_stage(current, payload)
                continue

            stage = self._stages[current]
            try:
                payload = await self._execute(stage, payload)
            except Exception as exc:
                if current is StageName.UPDATE_STATUS:
                    logger.error("Terminal status write failed | doc=%s error=%s", doc, exc, exc_info=True)
                    raise
                logger.error("Stage failed | doc=%s stage=%s error=%s", doc, current.value, exc, exc_info=True)
                error, failed_at = exc, current
                current = next_stage(current, payload, failed=True)
                continue

            logger.info("Stage done | doc=%s stage=%s", doc, current.value)
            await self._record_progress(stage, payload)
            current = next_stage(current, payload)

        logger.info("Run end | doc=%s status=%s", doc, payload.status.value if payload.status else None)
        return payload

    async def _execute(self, stage: Stage, payload: JobPayload) -> JobPayload:
        missing = sorted(f for f in stage.reads if not payload.has(f))
        if missing:
            raise PayloadContractError(f"{stage.name.value} requires missing fields: {', '.join(missing)}")

        updates = await stage.run(payload)
        undeclared = sorted(set(updates) - stage.writes)
        if undeclared:
            raise PayloadContractError(f"{stage.name.value} wrote undeclared fields: {', '.join(undeclared)}")
        return payload.merge(updates)

    async def _record_progress(self, stage: Stage, payload: JobPayload) -> None:
        if stage.progress is None:
            return
        if stage.name is StageName.INIT:
            write: Awaitable[None] = self._recorder.mark_processing(payload, stage.progress)
        else:
            write = self._recorder.record_progress(payload.document_id, stage.name.value, stage.progress)
        try:
            await write
        except Exception as exc:
            logger.warning(
                "Progress write failed | doc=%s stage=%s error=%s",
                payload.document_id, stage.name.value, exc,
            )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_orchestrator(
    store: ContentStore,
    ocr_client: OcrJobClient,
    document_table: StatusTable,
    agent: AgentClient | None = None,
    config: Settings | None = None,
) -> WorkflowOrchestrator:
    """Assemble every stage over the given capabilities."""
    cfg = config or default_settings
    recorder = StatusRecorder(document_table)
    stages: list[Stage] = [
        InitStage(),
        ValidateStage(store, cfg),
        ExtractStage(build_extractors(store, ocr_client, cfg), store, cfg),
        AnalyzeStage(ContentAnalyzer(), store),
        CompareStage(DocumentComparer()),
        GenerateInsightsStage(InsightGenerator(agent)),
        StoreStage(ResultStore(store, document_table, cfg)),
        UpdateStatusStage(recorder),
    ]
    return WorkflowOrchestrator(stages, recorder)


def build_default_orchestrator(config: Settings | None = None) -> WorkflowOrchestrator:
    """Production wiring: S3, Textract, DynamoDB and (optionally) the Bedrock agent."""
    cfg = config or default_settings
    agent = BedrockAgentClient(cfg) if cfg.insights_use_agent and cfg.agent_configured else None
    return build_orchestrator(
        store=S3ContentStore(cfg),
        ocr_client=TextractJobClient(cfg),
        document_table=DynamoStatusTable(cfg.document_status_table, "documentId", cfg),
        agent=agent,
        config=cfg,
    )
