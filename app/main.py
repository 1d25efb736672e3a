from app.config.settings import Settings
from app.database.connection import close_pool, init_pool, init_schema
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.logging.logger import Log
from app.processor.processor import build_processor
from app.worker.job_runner import JobRunner
from app.worker.worker import Worker


def main() -> None:
    """Entry point: initialize pool and schema -> build dependencies -> start worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    try:
        init_schema()
        doc_repo = DocumentRepository()
        job_repo = JobRepository(settings.ocr_max_concurrency)
        processor = build_processor(settings, doc_repo=doc_repo, job_repo=job_repo)
        job_runner = JobRunner(processor, job_repo)
        worker = Worker(job_repo, job_runner, settings, doc_repo=doc_repo)
        worker.run()
    finally:
        close_pool()


if __name__ == "__main__":
    main()
