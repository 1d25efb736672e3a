from app.config.settings import Settings
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.extraction.normalizer import FieldNormalizer
from app.logging.logger import Log
from app.ocr.base import BaseOcrProvider
from app.ocr.factory import OcrProviderFactory
from app.processor.pipeline import PipelineContext, PipelineStep
from app.processor.steps import (
    FetchBlobStep,
    LoadDocumentStep,
    MarkFailedStep,
    MarkProcessingStep,
    NormalizeStep,
    PersistResultStep,
    RecognizeStep,
)
from app.storage.base import BaseBlobStorage
from app.storage.factory import StorageFactory


class Processor:
    """Runs the extraction pipeline for one claimed job.

    Pipeline: mark processing -> load -> fetch blob -> recognize -> normalize
    -> persist. If any step raises, ``failed_step`` records the failure on the
    document and the job, and the exception is re-raised.
    """

    def __init__(self, steps: list[PipelineStep], failed_step: PipelineStep) -> None:
        self._steps = steps
        self._failed_step = failed_step

    def process(self, document_id: str, job_id: int) -> PipelineContext:
        Log.info(f"Processing document {document_id} for job {job_id}")
        context = PipelineContext(document_id=document_id, job_id=job_id)
        try:
            for step in self._steps:
                context = step.run(context)
        except Exception as exc:
            context.error_message = str(exc) or type(exc).__name__
            self._failed_step.run(context)
            raise
        return context


def build_processor(
    settings: Settings,
    *,
    storage: BaseBlobStorage | None = None,
    provider: BaseOcrProvider | None = None,
    doc_repo: DocumentRepository | None = None,
    job_repo: JobRepository | None = None,
) -> Processor:
    """Build a Processor with all required adapters."""
    storage = storage or StorageFactory.create(settings)
    provider = provider or OcrProviderFactory.create(settings)
    doc_repo = doc_repo or DocumentRepository()
    job_repo = job_repo or JobRepository(settings.ocr_max_concurrency)
    steps: list[PipelineStep] = [
        MarkProcessingStep(doc_repo),
        LoadDocumentStep(doc_repo),
        FetchBlobStep(storage),
        RecognizeStep(provider, settings.ocr_timeout_seconds),
        NormalizeStep(FieldNormalizer(), provider.name),
        PersistResultStep(doc_repo, job_repo),
    ]
    return Processor(steps=steps, failed_step=MarkFailedStep(doc_repo, job_repo))
