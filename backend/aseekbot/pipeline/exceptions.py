"""
Pipeline error taxonomy.

Fatal errors raised by a stage short-circuit the run to the HandleError
stage; everything else (extraction, analysis, insight degradation) is
absorbed inside the stage that owns it.

  PipelineError
    ├── ValidationError            validation stage, always fatal
    │     ├── SourceNotFoundError
    │     ├── FileTooLargeError
    │     └── UnsupportedFileTypeError
    ├── OcrError
    │     ├── OcrJobFailedError    job reported FAILED (absorbed by the OCR extractor)
    │     └── OcrJobTimeoutError   poll budget exhausted (fatal)
    ├── ComparisonError
    └── PayloadContractError       a stage broke its declared reads/writes
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class. ``kind`` is the stable tag written to the status record."""

    kind = "PipelineError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    kind = "ValidationError"


class SourceNotFoundError(ValidationError):
    kind = "SourceNotFound"


class FileTooLargeError(ValidationError):
    kind = "FileTooLarge"

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        super().__init__(
            f"File size exceeds maximum allowed ({size_bytes} > {max_bytes})"
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class UnsupportedFileTypeError(ValidationError):
    kind = "UnsupportedFileType"


class OcrError(PipelineError):
    kind = "OcrError"


class OcrJobFailedError(OcrError):
    kind = "OcrJobFailed"

    def __init__(self, job_id: str, status_message: str | None = None) -> None:
        super().__init__(
            f"Textract job {job_id} failed: {status_message or 'no status message'}"
        )
        self.job_id = job_id


class OcrJobTimeoutError(OcrError):
    kind = "OcrJobTimeout"

    def __init__(self, job_id: str, attempts: int) -> None:
        super().__init__(
            f"Textract job {job_id} did not finish after {attempts} polling attempts"
        )
        self.job_id = job_id
        self.attempts = attempts


class ComparisonError(PipelineError):
    kind = "ComparisonError"


class PayloadContractError(PipelineError):
    kind = "PayloadContractError"
