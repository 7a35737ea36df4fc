from app.config.settings import Settings
from app.database.models import OcrJobRecord
from app.database.repositories.ocr_job_repository import OcrJobRepository
from app.fulfillment.exceptions import NotFoundError
from app.fulfillment.fulfiller import OcrFulfiller
from app.logging.logger import Log


class JobRunner:
    """Run one OCR job, catch exceptions, and apply retry logic."""

    def __init__(
        self,
        fulfiller: OcrFulfiller,
        job_repo: OcrJobRepository,
        settings: Settings,
    ) -> None:
        self._fulfiller = fulfiller
        self._job_repo = job_repo
        self._settings = settings

    def run(self, job: OcrJobRecord) -> None:
        """Execute a single job with error handling."""
        Log.info(
            f"Running job {job.id} for document {job.document_id} "
            f"(attempt {job.attempts + 1})"
        )
        try:
            self._fulfiller.fulfill(job.collection_id, job.document_id)
            self._job_repo.mark_done(job.id)
            Log.info(f"Job {job.id} completed successfully")
        except NotFoundError as exc:
            Log.error(f"Job {job.id} references missing data, not retrying: {exc}")
            self._job_repo.mark_failed(job.id, str(exc))
        except Exception as exc:
            self._handle_failure(job, exc)

    def _handle_failure(self, job: OcrJobRecord, exc: Exception) -> None:
        """Increment attempts; mark failed if at max, otherwise back to pending."""
        Log.error(f"Job {job.id} failed: {exc}")
        if job.attempts + 1 >= self._settings.max_job_attempts:
            self._job_repo.mark_failed(job.id, str(exc))
            Log.error(f"Job {job.id} permanently failed after {job.attempts + 1} attempts")
        else:
            self._job_repo.increment_attempts(job.id, str(exc))
            Log.warning(f"Job {job.id} will be retried (attempt {job.attempts + 2})")
