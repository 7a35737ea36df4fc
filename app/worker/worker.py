import time

from app.config.settings import Settings
from app.database.connection import get_connection
from app.database.models import OcrJobRecord
from app.database.repositories.ocr_job_repository import OcrJobRepository
from app.logging.logger import Log
from app.worker.job_runner import JobRunner


class Worker:
    """Poll loop: claim an OCR job, run it, sleep when the queue is empty."""

    def __init__(
        self,
        job_repo: OcrJobRepository,
        job_runner: JobRunner,
        settings: Settings,
    ) -> None:
        self._job_repo = job_repo
        self._job_runner = job_runner
        self._settings = settings

    def run(self, max_jobs: int | None = None) -> int:
        """Main poll loop. Runs until interrupted.

        If max_jobs is set, stop after processing that many jobs. Returns the
        number of jobs processed.
        """
        Log.info("OCR worker started, polling for jobs")
        jobs_done = 0
        try:
            while max_jobs is None or jobs_done < max_jobs:
                job = self._try_claim_job()
                if job is None:
                    Log.debug("No OCR jobs available, sleeping")
                    time.sleep(self._settings.job_poll_interval_seconds)
                    continue
                self._job_runner.run(job)
                jobs_done += 1
        except KeyboardInterrupt:
            Log.info("OCR worker shutting down gracefully")
        return jobs_done

    def _try_claim_job(self) -> OcrJobRecord | None:
        """Attempt to claim the next pending job; DB errors mean try again later."""
        try:
            with get_connection() as conn:
                return self._job_repo.claim_next_job(conn)
        except Exception as exc:
            Log.warning(f"Database error, will retry: {exc}")
            return None
