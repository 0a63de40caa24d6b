# dashboard/jobs/registry.py
import threading
from typing import List, Optional

from dashboard.common.api_client import ApiClient, GatewayError, describe_error
from dashboard.common.types import Job
from dashboard.utils.logging_config import setup_logging

logger = setup_logging('registry')

# The backend registers recurring jobs as script_<id>; manual runs get temp_ ids
SCHEDULED_JOB_PREFIX = 'script_'


def find_scheduled_job(jobs: List[Job], script_id: int) -> Optional[Job]:
    """Return the recurring job of a script, ignoring one-off manual runs"""
    return next(
        (job for job in jobs
         if job.script_id == script_id and job.job_id.startswith(SCHEDULED_JOB_PREFIX)),
        None
    )


class JobRegistry:
    """Scheduled jobs as last reported by the backend"""

    def __init__(self, client: ApiClient):
        self.client = client
        self.jobs: List[Job] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self._lock = threading.Lock()

    def refresh(self) -> List[Job]:
        self.is_loading = True
        try:
            data = self.client.list_jobs(scheduled_only=True)
            jobs = [Job.from_dict(item) for item in data]
            with self._lock:
                self.jobs = jobs
                self.error = None
        except GatewayError as e:
            logger.error(f"Failed to load scheduled jobs: {e}")
            with self._lock:
                self.error = describe_error(e, 'Failed to load scheduled jobs')
            raise
        finally:
            self.is_loading = False
        return self.jobs

    def scheduled_job(self, script_id: int) -> Optional[Job]:
        with self._lock:
            return find_scheduled_job(self.jobs, script_id)

    def get(self, job_id: int) -> Optional[Job]:
        with self._lock:
            return next((job for job in self.jobs if job.id == job_id), None)

    def toggle(self, job: Job) -> Optional[Job]:
        """
        Pause or resume a job on the backend, then reload the registry.

        Local state is never flipped ahead of the server, so until the
        refresh returns the previous enabled value is still shown.

        Returns:
            The refreshed job, or None if it disappeared from the backend
        """
        response = self.client.toggle_job(job.id)
        logger.info(f"Toggled job {job.job_id}: {response}")
        self.refresh()
        return self.get(job.id)
