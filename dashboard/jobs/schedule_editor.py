# dashboard/jobs/schedule_editor.py
import re
from typing import Callable, Dict, List, Optional, Tuple

from dashboard.common.api_client import ApiClient, GatewayError, describe_error
from dashboard.common.notifications import Notifier
from dashboard.common.types import Job
from dashboard.utils.logging_config import setup_logging

logger = setup_logging('schedule_editor')

COMMON_SCHEDULES: List[Dict[str, str]] = [
    {'label': 'Every hour', 'value': '0 * * * *'},
    {'label': 'Every 6 hours', 'value': '0 */6 * * *'},
    {'label': 'Daily at midnight', 'value': '0 0 * * *'},
    {'label': 'Weekly on Sunday', 'value': '0 0 * * 0'},
    {'label': 'Monthly', 'value': '0 0 1 * *'},
]

# (field name, APScheduler keyword, lower bound, upper bound)
CRON_FIELDS: List[Tuple[str, str, int, int]] = [
    ('minute', 'minute', 0, 59),
    ('hour', 'hour', 0, 23),
    ('day of month', 'day', 1, 31),
    ('month', 'month', 1, 12),
    ('day of week', 'day_of_week', 0, 6),
]

EMPTY_SCHEDULE_MESSAGE = 'Please select or enter a schedule'

_NUMBER = re.compile(r'[0-9]+')


class ScheduleValidationError(ValueError):
    """Cron expression rejected before it reaches the backend"""


def _validate_field(value: str, name: str, low: int, high: int) -> Optional[str]:
    if value == '*':
        return None

    if value.startswith('*/'):
        step = value[2:]
        if not _NUMBER.fullmatch(step) or not 1 <= int(step) <= high:
            return f"Invalid {name} step: {value} (expected */N with N between 1 and {high})"
        return None

    for item in value.split(','):
        if not _NUMBER.fullmatch(item):
            return f"Invalid {name} value: {item or value} (expected *, */N or a comma-separated list)"
        if not low <= int(item) <= high:
            return f"Invalid {name} value: {item} (must be {low}-{high})"
    return None


def validate_cron(expression: Optional[str]) -> Optional[str]:
    """
    Check a five-field cron expression

    Args:
        expression: Cron expression string

    Returns:
        The message of the first violated rule, or None if the expression is valid
    """
    if not expression or not expression.strip():
        return EMPTY_SCHEDULE_MESSAGE

    parts = expression.split()
    if len(parts) != 5:
        return "Invalid cron expression. Expected 5 fields: 'minute hour day month day_of_week'"

    for value, (name, _, low, high) in zip(parts, CRON_FIELDS):
        error = _validate_field(value, name, low, high)
        if error:
            return error
    return None


def parse_cron_expression(expression: str) -> Dict[str, str]:
    """
    Parse cron expression into APScheduler kwargs

    Raises:
        ScheduleValidationError: If the expression is not valid
    """
    error = validate_cron(expression)
    if error:
        raise ScheduleValidationError(error)

    return {keyword: value for value, (_, keyword, _, _) in zip(expression.split(), CRON_FIELDS)}


class ScheduleEditor:
    """
    Edits the recurring schedule of one script.

    The predefined and custom inputs share a single expression: picking a
    preset fills the expression and clears any validation error.
    """

    def __init__(self, client: ApiClient, script_id: int, job: Optional[Job] = None,
                 on_schedule: Optional[Callable[[], None]] = None,
                 notifier: Optional[Notifier] = None):
        self.client = client
        self.script_id = script_id
        self.job = job
        self.on_schedule = on_schedule
        self.notifier = notifier
        self.expression = job.cron_expression if job else ''
        self.error: Optional[str] = None
        self.closed = False

    def select_predefined(self, value: str) -> None:
        self.expression = value
        self.error = None

    def set_expression(self, value: str) -> None:
        self.expression = value.strip()
        self.error = None

    def validate(self) -> bool:
        self.error = validate_cron(self.expression)
        return self.error is None

    def submit(self) -> Job:
        """
        Create or update the script's job with the current expression

        Raises:
            ScheduleValidationError: If the expression is invalid; nothing is sent
            GatewayError: If the backend rejects the request
        """
        if not self.validate():
            raise ScheduleValidationError(self.error)

        expression = ' '.join(self.expression.split())
        try:
            if self.job:
                data = self.client.update_job(self.job.id, expression)
            else:
                data = self.client.create_job(self.script_id, expression)
        except GatewayError as e:
            logger.error(f"Failed to save schedule for script {self.script_id}: {e}")
            self.error = describe_error(e, 'Failed to update schedule')
            if self.notifier:
                self.notifier.error(self.error)
            raise

        job = Job.from_dict(data)
        logger.info(f"Saved schedule '{expression}' for script {self.script_id} (job {job.job_id})")
        if self.notifier:
            self.notifier.success('Schedule updated successfully')
        if self.on_schedule:
            self.on_schedule()
        self.job = job
        self.closed = True
        return job
