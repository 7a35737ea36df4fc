from app.config.settings import Settings
from app.database.connection import close_pool, init_pool
from app.database.repositories.ocr_job_repository import OcrJobRepository
from app.fulfillment.fulfiller import build_fulfiller
from app.logging.logger import Log
from app.worker.job_runner import JobRunner
from app.worker.worker import Worker


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> start worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    try:
        fulfiller = build_fulfiller(settings)
        job_repo = OcrJobRepository(settings.max_job_attempts)
        job_runner = JobRunner(fulfiller, job_repo, settings)
        worker = Worker(job_repo, job_runner, settings)
        worker.run()
    finally:
        close_pool()


if __name__ == "__main__":
    main()
