from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import requests
from apscheduler.jobstores.base import ConflictingIdError, JobLookupError

from config import TestConfig
from dashboard.common.api_client import ApiClient
from dashboard.common.notifications import Notifier

BASE_URL = TestConfig.API_BASE_URL


def api_url(path: str) -> str:
    return f"{BASE_URL}/api{path}"


def make_response(status: int = 200, body: Any = None, text: Optional[str] = None,
                  content_type: Optional[str] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.encoding = 'utf-8'
    if text is None:
        response._content = json.dumps(body).encode('utf-8')
        response.headers['Content-Type'] = content_type or 'application/json'
    else:
        response._content = text.encode('utf-8')
        response.headers['Content-Type'] = content_type or 'text/plain; charset=utf-8'
    return response


class FakeSession:
    """Stands in for requests.Session; answers are queued per (method, url)."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200, **kwargs: Any) -> None:
        self.routes.setdefault((method, api_url(path)), []).append(make_response(status, body, **kwargs))

    def add_error(self, method: str, path: str, error: Exception) -> None:
        self.routes.setdefault((method, api_url(path)), []).append(error)

    def add_callback(self, method: str, path: str, callback: Callable[[], requests.Response]) -> None:
        self.routes.setdefault((method, api_url(path)), []).append(callback)

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c['method'] == method and c['url'] == api_url(path)]

    def request(self, method: str, url: str, params: Optional[dict] = None, json: Any = None):
        self.calls.append({'method': method, 'url': url, 'params': params, 'json': json})
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {url}")
        # The last queued answer keeps being served
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item()
        return item


class FakeJob:
    def __init__(self, func, args, run_date, trigger):
        self.func = func
        self.args = args
        self.run_date = run_date
        self.trigger = trigger


class FakeScheduler:
    """Records one-shot jobs so tests decide when they fire."""

    def __init__(self) -> None:
        self.jobs: Dict[str, FakeJob] = {}
        self.history: List[str] = []

    def add_job(self, func, trigger=None, run_date=None, args=None, id=None,
                replace_existing=False, **kwargs):
        if id in self.jobs and not replace_existing:
            raise ConflictingIdError(id)
        self.jobs[id] = FakeJob(func, list(args or []), run_date, trigger)
        self.history.append(id)
        return self.jobs[id]

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def fire(self, job_id):
        job = self.jobs.pop(job_id)
        job.func(*job.args)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(session: FakeSession) -> ApiClient:
    return ApiClient(BASE_URL, session=session)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


SCRIPTS = [
    {'id': 1, 'name': 'Byggmakker prices', 'description': 'Store prices', 'type': 'processor',
     'filename': 'byggmakker/prices.py'},
    {'id': 2, 'name': 'Byggmakker spider', 'description': 'Crawls products', 'type': 'spider'},
]

JOBS = [
    {'id': 10, 'job_id': 'script_1', 'script_id': 1, 'cron_expression': '0 * * * *',
     'enabled': True, 'created_at': '2024-01-01T00:00:00'},
    {'id': 11, 'job_id': 'temp_2_1704067200.0', 'script_id': 2, 'cron_expression': 'once',
     'enabled': True, 'created_at': '2024-01-01T00:00:00'},
]
