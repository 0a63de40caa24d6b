from __future__ import annotations

import pytest
import requests

from dashboard.common.api_client import (
    DEFAULT_ERROR_MESSAGE,
    ApiError,
    ApiRoutes,
    GatewayConnectionError,
    describe_error,
)


def test_json_body_is_parsed(client, session):
    session.add('GET', '/warehouses', [{'id': 1, 'name': 'Byggmakker'}])

    assert client.get(client.routes.warehouses()) == [{'id': 1, 'name': 'Byggmakker'}]


def test_non_json_success_returns_text(client, session):
    session.add('DELETE', '/jobs/3', text='', status=204)

    assert client.delete(client.routes.job(3)) == ''


def test_error_uses_server_detail(client, session):
    session.add('GET', '/warehouses/9/scripts', {'detail': 'Warehouse not found'}, 404)

    with pytest.raises(ApiError) as excinfo:
        client.list_warehouse_scripts(9)

    assert excinfo.value.status == 404
    assert excinfo.value.message == 'Warehouse not found'


def test_error_falls_back_to_backend_error_key(client, session):
    session.add('POST', '/jobs', {'error': 'Must include script_id and cron_expression'}, 400)

    with pytest.raises(ApiError, match='Must include script_id'):
        client.post(client.routes.jobs(), {})


def test_unparsable_error_body_gets_generic_message(client, session):
    session.add('GET', '/products/stats/basic', text='<html>Bad gateway</html>', status=502,
                content_type='text/html')

    with pytest.raises(ApiError) as excinfo:
        client.basic_stats()

    assert excinfo.value.status == 502
    assert excinfo.value.message == DEFAULT_ERROR_MESSAGE


def test_transport_failure_raises_connection_error(client, session):
    session.add_error('GET', '/warehouses', requests.ConnectionError('refused'))

    with pytest.raises(GatewayConnectionError) as excinfo:
        client.list_warehouses()

    assert excinfo.value.status is None


def test_none_params_are_dropped_and_body_is_json(client, session):
    session.add('GET', '/jobs/scripts/4/logs', [])
    session.add('PUT', '/jobs/10', {'id': 10})

    client.script_logs(4, limit=1)
    client.update_job(10, '0 0 * * *')

    assert session.calls[0]['params'] == {'limit': 1}
    assert session.calls[1]['json'] == {'cron_expression': '0 0 * * *'}


def test_scheduled_only_jobs_query(client, session):
    session.add('GET', '/jobs', [])

    client.list_jobs()

    assert session.calls[0]['params'] == {'scheduled_only': 'true'}


def test_routes_follow_backend_paths():
    routes = ApiRoutes('http://backend.test/')

    assert routes.run_script(5) == 'http://backend.test/api/run_now/5'
    assert routes.execution_status(7) == 'http://backend.test/api/jobs/execution/7/status'
    assert routes.execution_logs(7) == 'http://backend.test/api/jobs/executions/7/logs'
    assert routes.toggle_job(3) == 'http://backend.test/api/jobs/3/toggle'
    assert routes.product_info() == 'http://backend.test/api/products/product-info'


def test_describe_error_prefers_server_message():
    assert describe_error(ApiError(400, 'Invalid cron'), 'Failed') == 'Invalid cron'
    assert describe_error(ApiError(500, DEFAULT_ERROR_MESSAGE), 'Failed to run script') == 'Failed to run script'
    assert describe_error(GatewayConnectionError('refused'), 'Failed to run script') == 'Failed to run script'
