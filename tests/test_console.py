from __future__ import annotations

import pytest

from conftest import JOBS, SCRIPTS
from dashboard.console import ScriptConsole
from dashboard.jobs.tracker import ExecutionState


@pytest.fixture
def console(client, scheduler, notifier):
    return ScriptConsole(client, scheduler, notifier=notifier)


def _run_script_1(session, console):
    session.add('POST', '/run_now/1', {'execution_id': 42}, 202)
    console.tracker.run(1)


def test_failed_refresh_keeps_tracking_active_runs(console, session, scheduler, notifier):
    session.add('GET', '/warehouses/5/scripts', SCRIPTS)
    session.add('GET', '/warehouses/5/scripts', {'detail': 'Database unavailable'}, 503)
    session.add('GET', '/jobs', JOBS)
    console.select_warehouse(5)
    _run_script_1(session, console)

    console.select_warehouse(5)

    assert console.directory.error == 'Database unavailable'
    assert console.tracker.state(1) == ExecutionState.POLLING
    assert 'poll_script_1' in scheduler.jobs
    assert notifier.pending()[-1].description == 'Database unavailable'


def test_switching_warehouse_stops_tracking_hidden_scripts(console, session, scheduler):
    session.add('GET', '/warehouses/5/scripts', SCRIPTS)
    session.add('GET', '/warehouses/6/scripts', [{'id': 3, 'name': 'Maxbo prices', 'type': 'processor'}])
    session.add('GET', '/jobs', JOBS)
    console.select_warehouse(5)
    _run_script_1(session, console)

    rows = console.select_warehouse(6)

    assert [row['id'] for row in rows] == [3]
    assert console.tracker.state(1) == ExecutionState.IDLE
    assert not scheduler.jobs


def test_rows_combine_schedule_and_run_state(console, session):
    session.add('GET', '/warehouses/5/scripts', SCRIPTS)
    session.add('GET', '/jobs', JOBS)
    console.select_warehouse(5)
    _run_script_1(session, console)

    rows = {row['id']: row for row in console.rows()}

    assert rows[1]['schedule']['cron_expression'] == '0 * * * *'
    assert rows[1]['run']['state'] == 'polling'
    assert rows[1]['can_view_logs'] is False
    assert rows[2]['schedule'] is None
    assert rows[2]['run']['state'] == 'idle'


def test_toggle_without_schedule(console, session):
    session.add('GET', '/warehouses/5/scripts', SCRIPTS)
    session.add('GET', '/jobs', JOBS)
    console.select_warehouse(5)

    with pytest.raises(LookupError):
        console.toggle_schedule(2)
