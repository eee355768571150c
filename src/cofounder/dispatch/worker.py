"""Background worker that executes local dispatch jobs."""

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from cofounder.config import Config
from cofounder.db.engine import init_db
from cofounder.db.models import LOCAL_TARGET
from cofounder.dispatch.orchestrator import get_pending_jobs, process_dispatch_job

logger = logging.getLogger(__name__)

_STOP = object()


class DispatchWorker:
    """Runs local dispatch jobs concurrently in the background.

    Jobs are submitted by id. A daemon thread takes them off the queue and
    hands each one to a thread pool, so a long-running agent never holds up
    the jobs behind it. Every job opens its own database connection, and any
    crash while processing a job is logged without stopping the worker.
    """

    def __init__(self, config: Config, sweep_pending: bool = True):
        self.config = config
        self.sweep_pending = sweep_pending
        self._jobs: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._pool: ThreadPoolExecutor | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the dispatcher thread and its job pool."""
        if self.is_running:
            return
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, self.config.dispatch_max_concurrent),
            thread_name_prefix="dispatch-job",
        )
        self._thread = threading.Thread(
            target=self._run, name="dispatch-worker", daemon=True
        )
        self._thread.start()
        logger.info(
            "Dispatch worker started (up to %s concurrent jobs)",
            self.config.dispatch_max_concurrent,
        )

    def stop(self, timeout: float = 10):
        """Stop taking new jobs and wait for the dispatcher thread to exit.

        Jobs already running are left to finish on the pool.
        """
        if not self._thread:
            return
        self._jobs.put(_STOP)
        self._thread.join(timeout=timeout)
        self._thread = None
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None
        logger.info("Dispatch worker stopped")

    def submit(self, job_id: int):
        self._jobs.put(job_id)
        logger.debug("Submitted dispatch job #%s", job_id)

    def join(self):
        """Block until every submitted job has been processed."""
        self._jobs.join()

    def _run(self):
        if self.sweep_pending:
            self._sweep()
        while True:
            job_id = self._jobs.get()
            if job_id is _STOP:
                self._jobs.task_done()
                return
            try:
                future = self._pool.submit(self._process, job_id)
            except RuntimeError:
                logger.exception("Could not schedule dispatch job #%s", job_id)
                self._jobs.task_done()
                continue
            future.add_done_callback(self._job_done(job_id))

    def _job_done(self, job_id: int):
        def callback(future: Future):
            try:
                if exc := future.exception():
                    logger.error(
                        "Error processing dispatch job #%s", job_id, exc_info=exc
                    )
            finally:
                self._jobs.task_done()

        return callback

    def _process(self, job_id: int):
        db = init_db(self.config.db_path)
        try:
            process_dispatch_job(db, self.config, job_id)
        finally:
            db.close()

    def _sweep(self):
        """Queue local jobs left pending by an earlier run."""
        try:
            db = init_db(self.config.db_path)
            try:
                pending = get_pending_jobs(db, LOCAL_TARGET.value)
            finally:
                db.close()
        except Exception:
            logger.exception("Error sweeping pending dispatch jobs")
            return
        for job in pending:
            self.submit(job.id)
        if pending:
            logger.info("Picked up %s pending local dispatch job(s)", len(pending))
