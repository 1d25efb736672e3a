from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.documents.models import Document
from app.extraction.models import ExtractionResult
from app.ocr.models import ProviderRawOutput


@dataclass(slots=True)
class PipelineContext:
    document_id: str
    job_id: int
    document: Document | None = None
    raw_bytes: bytes = b""
    provider_output: ProviderRawOutput | None = None
    processing_ms: int = 0
    result: ExtractionResult | None = None
    error_message: str = ""


class PipelineStep(ABC):
    @abstractmethod
    def run(self, context: PipelineContext) -> PipelineContext:
        raise NotImplementedError
