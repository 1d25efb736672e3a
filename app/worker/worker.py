import time
from concurrent.futures import Future, ThreadPoolExecutor

from app.config.settings import Settings
from app.database.connection import get_connection
from app.database.models import JobRecord
from app.database.repositories.document_repository import DocumentRepository
from app.database.repositories.job_repository import JobRepository
from app.lifecycle.state_machine import Reason
from app.logging.logger import Log
from app.worker.job_runner import JobRunner


class Worker:
    """Poll loop: release stale work -> claim -> dispatch to a bounded thread pool."""

    def __init__(
        self,
        job_repo: JobRepository,
        job_runner: JobRunner,
        settings: Settings,
        doc_repo: DocumentRepository | None = None,
    ) -> None:
        self._job_repo = job_repo
        self._job_runner = job_runner
        self._settings = settings
        self._doc_repo = doc_repo or DocumentRepository()
        self._max_workers = max(1, settings.ocr_max_concurrency)
        self._in_flight: set[Future[None]] = set()

    def run(self, max_jobs: int | None = None) -> None:
        """Main poll loop. Runs forever until interrupted.

        If max_jobs is set, stop after dispatching that many jobs and wait for
        them to finish (for testing).
        """
        Log.info(f"Worker started with {self._max_workers} slots, polling for jobs")
        jobs_done = 0
        executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="ocr-job"
        )
        try:
            while max_jobs is None or jobs_done < max_jobs:
                self._release_stale_work()
                self._in_flight = {f for f in self._in_flight if not f.done()}
                if len(self._in_flight) >= self._max_workers:
                    time.sleep(self._settings.job_poll_interval_seconds)
                    continue
                job = self._try_claim_job()
                if job:
                    self._in_flight.add(executor.submit(self._job_runner.run, job))
                    jobs_done += 1
                else:
                    Log.debug("No jobs available, sleeping")
                    time.sleep(self._settings.job_poll_interval_seconds)
        except KeyboardInterrupt:
            Log.info("Worker shutting down gracefully")
        finally:
            executor.shutdown(wait=True)

    def _try_claim_job(self) -> JobRecord | None:
        """Attempt to claim the next pending job. Gracefully handle DB errors."""
        try:
            with get_connection() as conn:
                return self._job_repo.claim_next_job(conn)
        except Exception as exc:
            Log.warning(f"Database error, will retry: {exc}")
            return None

    def _release_stale_work(self) -> None:
        """Fail jobs a crashed worker left in processing and uploads that never finished."""
        try:
            with get_connection() as conn:
                released = self._job_repo.release_stale_jobs(
                    conn, self._settings.ocr_stale_job_seconds
                )
                for job in released:
                    self._doc_repo.fail_extraction(
                        conn,
                        job.document_id,
                        job.error_message or "Extraction did not finish",
                        reason=Reason.STALE_JOB_RELEASED,
                    )
                abandoned = self._doc_repo.fail_stale_uploads(
                    conn, self._settings.upload_stale_seconds
                )
                conn.commit()
        except Exception as exc:
            Log.warning(f"Could not release stale work, will retry: {exc}")
            return
        for job in released:
            Log.warning(f"Released stale job {job.id} for document {job.document_id}")
        for document in abandoned:
            Log.warning(f"Upload of document {document.id} never finished, marked failed")
