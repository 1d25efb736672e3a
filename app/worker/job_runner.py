from app.database.connection import get_connection
from app.database.models import JobRecord
from app.database.repositories.job_repository import JobRepository
from app.logging.logger import Log
from app.processor.processor import Processor


class JobRunner:
    """Run one job and catch exceptions. Failed jobs are not retried."""

    def __init__(self, processor: Processor, job_repo: JobRepository) -> None:
        self._processor = processor
        self._job_repo = job_repo

    def run(self, job: JobRecord) -> None:
        """Execute a single job with error handling."""
        Log.info(f"Running job {job.id} for document {job.document_id}")
        try:
            self._processor.process(job.document_id, job.id)
            Log.info(f"Job {job.id} completed successfully")
        except Exception as exc:
            self._handle_failure(job, exc)

    def _handle_failure(self, job: JobRecord, exc: Exception) -> None:
        """The pipeline records the failure itself; this covers a failing failure path."""
        Log.error(f"Job {job.id} failed: {exc}")
        try:
            with get_connection() as conn:
                self._job_repo.mark_failed(conn, job.id, str(exc) or type(exc).__name__)
                conn.commit()
        except Exception as db_exc:
            Log.exception(f"Could not mark job {job.id} as failed: {db_exc}")
