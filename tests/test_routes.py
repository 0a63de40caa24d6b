from __future__ import annotations

import pytest

import config
from conftest import JOBS, SCRIPTS
from dashboard import create_app, db
from dashboard.console import ScriptConsole


@pytest.fixture
def console(client, scheduler, notifier):
    return ScriptConsole(client, scheduler, notifier=notifier)


@pytest.fixture
def app(console):
    app = create_app(config.TestConfig, console=console)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def warehouse(session):
    session.add('GET', '/warehouses/5/scripts', SCRIPTS)
    session.add('GET', '/jobs', JOBS)


def test_selected_warehouse_is_remembered(http, warehouse):
    assert http.get('/api/preferences/warehouse').get_json() == {'warehouse_id': None}

    response = http.put('/api/preferences/warehouse', json={'warehouse_id': 5})

    assert response.status_code == 200
    rows = response.get_json()['scripts']
    assert [row['id'] for row in rows] == [1, 2]
    assert rows[0]['schedule']['job_id'] == 'script_1'
    assert rows[1]['schedule'] is None
    assert http.get('/api/preferences/warehouse').get_json() == {'warehouse_id': 5}


def test_invalid_warehouse_preference(http):
    assert http.put('/api/preferences/warehouse', json={}).status_code == 400
    assert http.put('/api/preferences/warehouse', json={'warehouse_id': 'five'}).status_code == 400


def test_scripts_restore_remembered_warehouse(http, console, warehouse):
    http.put('/api/preferences/warehouse', json={'warehouse_id': 5})
    console.directory.warehouse_id = None

    data = http.get('/api/scripts').get_json()

    assert data['warehouse_id'] == 5
    assert len(data['scripts']) == 2


def test_run_is_accepted_once(http, session, scheduler):
    session.add('POST', '/run_now/1', {'message': 'Script execution started', 'execution_id': 42}, 202)

    first = http.post('/api/scripts/1/run')
    second = http.post('/api/scripts/1/run')

    assert first.status_code == 202
    assert first.get_json()['state'] == 'polling'
    assert second.status_code == 409
    assert len(session.calls_to('POST', '/run_now/1')) == 1
    assert 'poll_script_1' in scheduler.jobs


def test_run_failure_reports_backend_status(http, session):
    session.add('POST', '/run_now/3', {'error': 'Script 3 not found'}, 404)

    response = http.post('/api/scripts/3/run')

    assert response.status_code == 404
    assert response.get_json() == {'error': 'Script 3 not found'}
    assert http.get('/api/scripts/3/execution').get_json()['state'] == 'idle'


def test_logs_require_finished_execution(http):
    assert http.get('/api/scripts/1/logs').status_code == 404


def test_invalid_schedule_is_rejected_locally(http, session, warehouse):
    http.put('/api/preferences/warehouse', json={'warehouse_id': 5})
    calls = len(session.calls)

    response = http.put('/api/scripts/2/schedule', json={'cron_expression': '60 * * * *'})

    assert response.status_code == 400
    assert response.get_json()['error'] == 'Invalid minute value: 60 (must be 0-59)'
    assert len(session.calls) == calls


def test_schedule_is_created_from_preset(http, session, warehouse):
    http.put('/api/preferences/warehouse', json={'warehouse_id': 5})
    session.add('POST', '/jobs', {'id': 12, 'job_id': 'script_2', 'script_id': 2,
                                  'cron_expression': '0 0 * * *', 'enabled': True}, 201)

    response = http.put('/api/scripts/2/schedule', json={'preset': '0 0 * * *'})

    assert response.status_code == 201
    assert response.get_json()['job_id'] == 'script_2'


def test_validate_schedule(http):
    valid = http.post('/api/schedules/validate', json={'cron_expression': '*/15 * * * *'}).get_json()
    invalid = http.post('/api/schedules/validate', json={'cron_expression': '0 * * *'}).get_json()

    assert valid['valid'] is True
    assert valid['fields']['minute'] == '*/15'
    assert invalid['valid'] is False


def test_validate_schedule_with_superscript_digit(http):
    response = http.post('/api/schedules/validate', json={'cron_expression': '² * * * *'})

    assert response.status_code == 200
    assert response.get_json()['valid'] is False
    assert response.get_json()['error'].startswith('Invalid minute value')


def test_toggle_unknown_job(http, session):
    session.add('GET', '/jobs', JOBS)
    http.get('/api/jobs')

    assert http.post('/api/jobs/99/toggle').status_code == 404


def test_toggle_before_jobs_are_loaded(http, session):
    paused = [dict(JOBS[0], enabled=False), JOBS[1]]
    session.add('GET', '/jobs', JOBS)
    session.add('GET', '/jobs', paused)
    session.add('POST', '/jobs/10/toggle', {'message': 'Job paused successfully', 'enabled': False})

    response = http.post('/api/jobs/10/toggle')

    assert response.status_code == 200
    assert response.get_json()['enabled'] is False
    assert len(session.calls_to('GET', '/jobs')) == 2
    assert len(session.calls_to('POST', '/jobs/10/toggle')) == 1


def test_notifications_are_drained(http, session):
    session.add('POST', '/run_now/1', {'message': 'Script execution started', 'execution_id': 42}, 202)
    http.post('/api/scripts/1/run')

    notifications = http.get('/api/notifications').get_json()

    assert [n['description'] for n in notifications] == ['Script execution started']
    assert http.get('/api/notifications').get_json() == []


def test_short_search_term_is_rejected(http, session):
    response = http.post('/api/products/search/term', json={'q': 's'})

    assert response.status_code == 400
    assert 'minimum 2 characters' in response.get_json()['error']
    assert http.get('/api/products/search?q=s').status_code == 400
    assert session.calls == []


def test_search_term_is_accepted(http, scheduler):
    response = http.post('/api/products/search/term', json={'q': 'skrue'})

    assert response.status_code == 202
    assert 'product_search' in scheduler.jobs
