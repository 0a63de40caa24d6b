# dashboard/console.py
from typing import Any, Dict, List, Optional

from dashboard.common.api_client import ApiClient, GatewayError, describe_error
from dashboard.common.notifications import Notifier
from dashboard.directory import ScriptDirectory, WarehouseDirectory
from dashboard.jobs.registry import JobRegistry
from dashboard.jobs.schedule_editor import ScheduleEditor
from dashboard.jobs.tracker import ExecutionTracker
from dashboard.products import ProductCatalog, ProductSearch
from dashboard.utils.logging_config import setup_logging

logger = setup_logging('console')


class ScriptConsole:
    """Everything one operator view needs, wired to a single backend client"""

    def __init__(self, client: ApiClient, scheduler, notifier: Optional[Notifier] = None,
                 poll_interval: float = 3.0, max_poll_failures: int = 5,
                 max_backoff: float = 60.0, max_poll_duration: float = 3600.0,
                 search_debounce: float = 0.5, search_min_length: int = 2,
                 search_page_size: int = 20):
        self.client = client
        self.scheduler = scheduler
        self.notifier = notifier or Notifier()
        self.warehouses = WarehouseDirectory(client)
        self.directory = ScriptDirectory(client)
        self.registry = JobRegistry(client)
        self.tracker = ExecutionTracker(
            client,
            scheduler,
            directory=self.directory,
            notifier=self.notifier,
            poll_interval=poll_interval,
            max_poll_failures=max_poll_failures,
            max_backoff=max_backoff,
            max_poll_duration=max_poll_duration,
        )
        self.catalog = ProductCatalog(client, min_length=search_min_length, page_size=search_page_size)
        self.search = ProductSearch(self.catalog, scheduler, debounce=search_debounce)

    @classmethod
    def from_config(cls, config, scheduler, session=None) -> 'ScriptConsole':
        return cls(
            ApiClient(config['API_BASE_URL'], session=session),
            scheduler,
            poll_interval=config['POLL_INTERVAL_SECONDS'],
            max_poll_failures=config['POLL_MAX_FAILURES'],
            max_backoff=config['POLL_MAX_BACKOFF_SECONDS'],
            max_poll_duration=config['POLL_MAX_DURATION_SECONDS'],
            search_debounce=config['SEARCH_DEBOUNCE_SECONDS'],
            search_min_length=config['SEARCH_MIN_LENGTH'],
            search_page_size=config['SEARCH_PAGE_SIZE'],
        )

    def select_warehouse(self, warehouse_id: Optional[int]) -> List[Dict[str, Any]]:
        """Load the scripts and schedules of a warehouse"""
        self.directory.select(warehouse_id)
        if self.directory.error:
            self.notifier.error(self.directory.error)
        else:
            # Polls of scripts that left the view must not keep running
            self.tracker.retain(self.directory.script_ids())
        if warehouse_id:
            self.refresh_jobs()
        return self.rows()

    def refresh_jobs(self) -> None:
        try:
            self.registry.refresh()
        except GatewayError:
            self.notifier.error(self.registry.error)

    def rows(self) -> List[Dict[str, Any]]:
        rows = []
        for script in self.directory.scripts:
            job = self.registry.scheduled_job(script.id)
            row = script.to_dict()
            row.update(
                schedule=job.to_dict() if job else None,
                run=self.tracker.snapshot(script.id),
                can_view_logs=self.tracker.can_view_logs(script.id),
            )
            rows.append(row)
        return rows

    def toggle_schedule(self, script_id: int):
        job = self.registry.scheduled_job(script_id)
        if job is None:
            raise LookupError(f"Script {script_id} has no schedule")
        try:
            job = self.registry.toggle(job)
        except GatewayError as e:
            self.notifier.error(describe_error(e, 'Failed to update job status'))
            raise
        self.notifier.success('Job status updated')
        return job

    def schedule_editor(self, script_id: int) -> ScheduleEditor:
        return ScheduleEditor(
            self.client,
            script_id,
            job=self.registry.scheduled_job(script_id),
            on_schedule=self.refresh_jobs,
            notifier=self.notifier,
        )

    def shutdown(self) -> None:
        self.tracker.shutdown()
        self.search.shutdown()
        logger.info("Script console shut down")
