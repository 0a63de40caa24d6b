# dashboard/jobs/tracker.py
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from apscheduler.jobstores.base import JobLookupError

from dashboard.common.api_client import ApiClient, GatewayError, describe_error
from dashboard.common.notifications import Notifier
from dashboard.common.types import Execution, ExecutionStatus, LogEntry
from dashboard.directory import ScriptDirectory
from dashboard.utils.logging_config import setup_logging

logger = setup_logging('tracker')

LOG_LEVELS = ('info', 'warning', 'error')


class ExecutionState(str, Enum):
    IDLE = 'idle'
    STARTING = 'starting'
    POLLING = 'polling'
    COMPLETED = 'completed'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'


ACTIVE_STATES = {ExecutionState.STARTING, ExecutionState.POLLING}
TERMINAL_STATES = {ExecutionState.COMPLETED, ExecutionState.FAILED, ExecutionState.TIMED_OUT}

ALLOWED_TRANSITIONS = {
    ExecutionState.IDLE: {ExecutionState.STARTING},
    ExecutionState.STARTING: {ExecutionState.POLLING, ExecutionState.IDLE},
    ExecutionState.POLLING: TERMINAL_STATES | {ExecutionState.IDLE},
    ExecutionState.COMPLETED: set(),
    ExecutionState.FAILED: set(),
    ExecutionState.TIMED_OUT: set(),
}


class TrackerError(Exception):
    """Base error for the execution tracker"""


class RunAlreadyActiveError(TrackerError):
    def __init__(self, script_id: int):
        super().__init__(f"Script {script_id} is already running")
        self.script_id = script_id


class ExecutionStartError(TrackerError):
    """The backend accepted the run but did not identify the execution"""


class NoExecutionError(TrackerError):
    pass


class InvalidTransitionError(TrackerError):
    pass


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScriptRun:
    """One pass of a script through the state machine, starting at IDLE"""

    def __init__(self, script_id: int):
        self.script_id = script_id
        self.state = ExecutionState.IDLE
        self.history: List[ExecutionState] = [ExecutionState.IDLE]
        self.execution: Optional[Execution] = None
        self.error: Optional[str] = None
        self.poll_failures = 0
        self.poll_count = 0
        self.polling_since: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def transition(self, new_state: ExecutionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Script {self.script_id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        logger.info(f"Script {self.script_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'script_id': self.script_id,
            'state': self.state.value,
            'running': self.is_active,
            'execution': self.execution.to_dict() if self.execution else None,
            'error': self.error,
            'history': [state.value for state in self.history],
        }


class ExecutionTracker:
    """
    Triggers script runs and follows them to completion.

    Each active script owns one pending poll job and a watchdog job. The next poll
    is only scheduled once the previous one has returned, so a script never
    has two status requests in flight. Consecutive poll failures back off
    exponentially and give up after max_poll_failures; a run that keeps
    reporting 'running' for longer than max_poll_duration is abandoned too.
    The watchdog enforces that limit even when a status request never
    returns. Both end in TIMED_OUT with an unknown execution status.
    Cancelling only stops local tracking, the backend keeps running the script.
    """

    def __init__(self, client: ApiClient, scheduler, directory: Optional[ScriptDirectory] = None,
                 notifier: Optional[Notifier] = None, poll_interval: float = 3.0,
                 max_poll_failures: int = 5, max_backoff: float = 60.0,
                 max_poll_duration: float = 3600.0,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.scheduler = scheduler
        self.directory = directory
        self.notifier = notifier or Notifier()
        self.poll_interval = poll_interval
        self.max_poll_failures = max_poll_failures
        self.max_backoff = max_backoff
        self.max_poll_duration = max_poll_duration
        self.clock = clock
        self._runs: Dict[int, ScriptRun] = {}
        self._lock = threading.RLock()
        self._closed = False

    @staticmethod
    def poll_job_id(script_id: int) -> str:
        return f'poll_script_{script_id}'

    @staticmethod
    def watchdog_job_id(script_id: int) -> str:
        return f'timeout_script_{script_id}'

    # Queries

    def get_run(self, script_id: int) -> Optional[ScriptRun]:
        with self._lock:
            return self._runs.get(script_id)

    def state(self, script_id: int) -> ExecutionState:
        run = self.get_run(script_id)
        return run.state if run else ExecutionState.IDLE

    def is_running(self, script_id: int) -> bool:
        return self.state(script_id) in ACTIVE_STATES

    def snapshot(self, script_id: int) -> Dict[str, Any]:
        with self._lock:
            run = self._runs.get(script_id)
            if run is None:
                return ScriptRun(script_id).to_dict()
            return run.to_dict()

    def can_view_logs(self, script_id: int) -> bool:
        with self._lock:
            run = self._runs.get(script_id)
            return bool(run and run.state in TERMINAL_STATES and run.execution)

    # Transitions

    def run(self, script_id: int) -> ScriptRun:
        """
        Start a script on the backend and begin polling its execution

        Raises:
            RunAlreadyActiveError: If the script is still starting or polling
            GatewayError: If the backend refused to start the script
            ExecutionStartError: If the start response carried no execution_id
        """
        with self._lock:
            if self._closed:
                raise TrackerError('Execution tracker has been shut down')
            current = self._runs.get(script_id)
            if current is not None and current.is_active:
                raise RunAlreadyActiveError(script_id)
            run = ScriptRun(script_id)
            run.transition(ExecutionState.STARTING)
            self._runs[script_id] = run

        try:
            response = self.client.run_script(script_id)
        except GatewayError as e:
            message = describe_error(e, 'Failed to run script')
            self._abort_start(run, message)
            raise

        execution_id = response.get('execution_id') if isinstance(response, dict) else None
        if execution_id is None:
            message = 'Backend did not return an execution id'
            self._abort_start(run, message)
            raise ExecutionStartError(message)

        with self._lock:
            if self._runs.get(script_id) is not run or run.state != ExecutionState.STARTING:
                logger.info(f"Script {script_id} was cancelled while starting")
                return run
            run.execution = Execution(
                execution_id=execution_id,
                script_id=script_id,
                timestamp=_utcnow_iso(),
                status=ExecutionStatus.PENDING,
            )
            run.transition(ExecutionState.POLLING)
            run.polling_since = self.clock()
            self._schedule_poll(run, self.poll_interval)
            self._schedule_watchdog(run)

        self.notifier.success('Script execution started')
        return run

    def _abort_start(self, run: ScriptRun, message: str) -> None:
        with self._lock:
            run.error = message
            if run.state == ExecutionState.STARTING:
                run.transition(ExecutionState.IDLE)
        logger.error(f"Failed to start script {run.script_id}: {message}")
        self.notifier.error(message)

    def _schedule_poll(self, run: ScriptRun, delay: float) -> None:
        self.scheduler.add_job(
            func=self._poll,
            trigger='date',
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            args=[run],
            id=self.poll_job_id(run.script_id),
            replace_existing=True,
        )

    def _schedule_watchdog(self, run: ScriptRun) -> None:
        self.scheduler.add_job(
            func=self._watchdog,
            trigger='date',
            run_date=datetime.now(timezone.utc) + timedelta(seconds=self.max_poll_duration),
            args=[run],
            id=self.watchdog_job_id(run.script_id),
            replace_existing=True,
        )

    def _remove_job(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            # Already fired or never scheduled
            pass

    def _unschedule_jobs(self, script_id: int) -> None:
        self._remove_job(self.poll_job_id(script_id))
        self._remove_job(self.watchdog_job_id(script_id))

    def _watchdog(self, run: ScriptRun) -> None:
        """Give up on a run whose status poll is still outstanding at the deadline"""
        with self._lock:
            if not self._is_polling(run):
                return
            self._time_out(run, f"Lost track of execution {run.execution.execution_id}: "
                                f"no final status after {self.max_poll_duration:.0f}s")
        self.notifier.error(run.error)

    def _is_polling(self, run: ScriptRun) -> bool:
        return self._runs.get(run.script_id) is run and run.state == ExecutionState.POLLING

    def _poll(self, run: ScriptRun) -> None:
        with self._lock:
            if not self._is_polling(run):
                return
            execution_id = run.execution.execution_id
            run.poll_count += 1

        try:
            status = self.client.execution_status(execution_id)
        except GatewayError as e:
            self._handle_poll_failure(run, e)
            return

        if not isinstance(status, dict):
            status = {}
        status_value = (status.get('status') or '').lower()

        with self._lock:
            if not self._is_polling(run):
                return
            run.poll_failures = 0

            if status_value in (ExecutionStatus.RUNNING.value, ExecutionStatus.PENDING.value):
                run.execution.status = ExecutionStatus(status_value)
                if self.clock() - run.polling_since >= self.max_poll_duration:
                    message = f"Execution {execution_id} is still running after {self.max_poll_duration:.0f}s, no longer tracking it"
                    self._time_out(run, message)
                else:
                    self._schedule_poll(run, self.poll_interval)
                    return
            elif status_value == ExecutionStatus.FAILED.value:
                message = status.get('error_message') or 'Script execution failed'
                run.execution.status = ExecutionStatus.FAILED
                run.execution.error = message
                run.error = message
                run.transition(ExecutionState.FAILED)
                self._unschedule_jobs(run.script_id)
            else:
                run.execution.status = ExecutionStatus.COMPLETED
                run.execution.timestamp = status.get('end_time') or _utcnow_iso()
                run.transition(ExecutionState.COMPLETED)
                self._unschedule_jobs(run.script_id)

        if run.state == ExecutionState.FAILED:
            self.notifier.error(run.error)
        elif run.state == ExecutionState.TIMED_OUT:
            self.notifier.error(run.error)
        elif run.state == ExecutionState.COMPLETED:
            self._complete(run)

    def _handle_poll_failure(self, run: ScriptRun, error: GatewayError) -> None:
        with self._lock:
            if not self._is_polling(run):
                return
            run.poll_failures += 1
            logger.warning(
                f"Status poll {run.poll_failures}/{self.max_poll_failures} for script "
                f"{run.script_id} failed: {error}"
            )
            if run.poll_failures >= self.max_poll_failures:
                self._time_out(run, f"Lost track of execution {run.execution.execution_id}: "
                                    f"status unavailable after {run.poll_failures} attempts")
            elif self.clock() - run.polling_since >= self.max_poll_duration:
                self._time_out(run, f"Lost track of execution {run.execution.execution_id}: "
                                    f"polling exceeded {self.max_poll_duration:.0f}s")
            else:
                self._schedule_poll(run, self.backoff_delay(run.poll_failures))
                return
        self.notifier.error(run.error)

    def backoff_delay(self, failures: int) -> float:
        return min(self.poll_interval * (2 ** failures), self.max_backoff)

    def _time_out(self, run: ScriptRun, message: str) -> None:
        run.execution.status = ExecutionStatus.UNKNOWN
        run.execution.error = message
        run.error = message
        run.transition(ExecutionState.TIMED_OUT)
        self._unschedule_jobs(run.script_id)
        logger.error(message)

    def _complete(self, run: ScriptRun) -> None:
        execution = run.execution
        if self.directory:
            self.directory.apply_execution(run.script_id, execution)
        self.notifier.success('Script execution completed')
        self._reconcile(run)

    def _reconcile(self, run: ScriptRun) -> None:
        """Replace the optimistic completion time with the backend's latest execution"""
        try:
            data = self.client.script_logs(run.script_id, skip=0, limit=1)
        except GatewayError as e:
            logger.warning(f"Could not reconcile last execution of script {run.script_id}: {e}")
            return

        if isinstance(data, dict):
            data = data.get('items') or data.get('logs') or []
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            logger.info(f"No execution history returned for script {run.script_id}")
            return

        latest = data[0]
        timestamp = latest.get('end_time') or latest.get('timestamp') or latest.get('start_time')
        if not timestamp:
            return

        with self._lock:
            if self._runs.get(run.script_id) is not run:
                return
            execution_id = latest.get('execution_id') or latest.get('id')
            if execution_id is not None:
                run.execution.execution_id = execution_id
            run.execution.timestamp = timestamp
        if self.directory:
            self.directory.apply_execution(run.script_id, run.execution)
        logger.info(f"Reconciled script {run.script_id} with execution {run.execution.execution_id}")

    # Cancellation

    def cancel(self, script_id: int) -> bool:
        """Stop tracking an active run locally; returns False if nothing was active"""
        with self._lock:
            run = self._runs.get(script_id)
            if run is None or not run.is_active:
                return False
            run.transition(ExecutionState.IDLE)
            self._unschedule_jobs(script_id)
        logger.info(f"Stopped tracking script {script_id}")
        return True

    def retain(self, script_ids: Iterable[int]) -> List[int]:
        """Cancel tracking of every script not in script_ids"""
        keep = set(script_ids)
        with self._lock:
            dropped = [sid for sid, run in self._runs.items() if sid not in keep and run.is_active]
        for script_id in dropped:
            self.cancel(script_id)
        return dropped

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            active = [sid for sid, run in self._runs.items() if run.is_active]
        for script_id in active:
            self.cancel(script_id)
        logger.info(f"Execution tracker shut down, cancelled {len(active)} active runs")

    # Logs

    def fetch_logs(self, script_id: int, level: Optional[str] = None) -> List[LogEntry]:
        """
        Fetch the log lines of the script's latest finished execution

        Raises:
            NoExecutionError: If the script has no finished execution to show
            ValueError: If level is not one of info, warning, error or all
        """
        if level in (None, '', 'all'):
            level = None
        elif level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {level}")

        with self._lock:
            run = self._runs.get(script_id)
            if not run or run.state not in TERMINAL_STATES or not run.execution:
                raise NoExecutionError('No recent execution found for this script')
            execution_id = run.execution.execution_id

        data = self.client.execution_logs(execution_id, level=level)
        if not isinstance(data, list):
            return []
        return [LogEntry.from_dict(item) for item in data if isinstance(item, dict)]
