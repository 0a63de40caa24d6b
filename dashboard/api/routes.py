# dashboard/api/routes.py
from flask import current_app, jsonify, request

from dashboard import db
from dashboard.api import bp
from dashboard.common.api_client import ApiError, GatewayError, describe_error
from dashboard.jobs.schedule_editor import (
    COMMON_SCHEDULES, ScheduleValidationError, parse_cron_expression, validate_cron
)
from dashboard.jobs.tracker import ExecutionStartError, NoExecutionError, RunAlreadyActiveError
from dashboard.models import get_selected_warehouse, set_selected_warehouse
from dashboard.products import SearchValidationError


def get_console():
    return current_app.extensions['script_console']


def gateway_error(error, fallback):
    """Translate a backend failure into a JSON error response"""
    status = error.status if isinstance(error, ApiError) and 400 <= error.status < 600 else 502
    return jsonify({'error': describe_error(error, fallback)}), status


def _ensure_warehouse_selected(console):
    if console.directory.warehouse_id is None:
        warehouse_id = get_selected_warehouse()
        if warehouse_id:
            console.select_warehouse(warehouse_id)


@bp.route('/warehouses', methods=['GET'])
def get_warehouses():
    """Get all warehouses"""
    console = get_console()
    warehouses = console.warehouses.refresh()
    if console.warehouses.error:
        console.notifier.error(console.warehouses.error)
        return jsonify({'error': console.warehouses.error}), 502
    return jsonify([{
        'id': w.id,
        'name': w.name,
        'description': w.description
    } for w in warehouses])


@bp.route('/preferences/warehouse', methods=['GET'])
def get_warehouse_preference():
    """Get the last selected warehouse"""
    return jsonify({'warehouse_id': get_selected_warehouse()})


@bp.route('/preferences/warehouse', methods=['PUT'])
def set_warehouse_preference():
    """Select a warehouse and remember the choice"""
    data = request.get_json() or {}

    if 'warehouse_id' not in data:
        return jsonify({'error': 'Must include warehouse_id'}), 400

    warehouse_id = data['warehouse_id']
    if warehouse_id is not None and not isinstance(warehouse_id, int):
        return jsonify({'error': 'warehouse_id must be an integer'}), 400

    set_selected_warehouse(warehouse_id)
    rows = get_console().select_warehouse(warehouse_id)
    return jsonify({'warehouse_id': warehouse_id, 'scripts': rows})


@bp.route('/scripts', methods=['GET'])
def get_scripts():
    """Get the scripts of the selected warehouse with their schedule and run state"""
    console = get_console()
    warehouse_id = request.args.get('warehouse_id', type=int)

    if warehouse_id is not None and warehouse_id != console.directory.warehouse_id:
        console.select_warehouse(warehouse_id)
    else:
        _ensure_warehouse_selected(console)

    return jsonify({
        'warehouse_id': console.directory.warehouse_id,
        'is_loading': console.directory.is_loading,
        'error': console.directory.error,
        'scripts': console.rows()
    })


@bp.route('/scripts/refresh', methods=['POST'])
def refresh_scripts():
    """Reload scripts and schedules from the backend"""
    console = get_console()
    console.directory.refresh()
    if console.directory.error:
        console.notifier.error(console.directory.error)
    else:
        console.tracker.retain(console.directory.script_ids())
    console.refresh_jobs()
    return jsonify({'error': console.directory.error, 'scripts': console.rows()})


@bp.route('/scripts/<int:script_id>/run', methods=['POST'])
def run_script(script_id):
    """Immediately run a script and start tracking its execution"""
    tracker = get_console().tracker

    try:
        run = tracker.run(script_id)
        return jsonify(run.to_dict()), 202
    except RunAlreadyActiveError as e:
        return jsonify({'error': str(e)}), 409
    except ExecutionStartError as e:
        return jsonify({'error': str(e)}), 502
    except GatewayError as e:
        return gateway_error(e, 'Failed to run script')


@bp.route('/scripts/<int:script_id>/execution', methods=['GET'])
def get_execution(script_id):
    """Get the tracked run state of a script"""
    return jsonify(get_console().tracker.snapshot(script_id))


@bp.route('/scripts/<int:script_id>/cancel', methods=['POST'])
def cancel_execution(script_id):
    """Stop tracking a script's execution (the backend run is not stopped)"""
    tracker = get_console().tracker
    cancelled = tracker.cancel(script_id)
    return jsonify({'cancelled': cancelled, 'run': tracker.snapshot(script_id)})


@bp.route('/scripts/<int:script_id>/logs', methods=['GET'])
def get_execution_logs(script_id):
    """Get logs of a script's latest finished execution"""
    console = get_console()
    level = request.args.get('level', type=str)

    try:
        logs = console.tracker.fetch_logs(script_id, level=level)
        return jsonify([log.to_dict() for log in logs])
    except NoExecutionError as e:
        return jsonify({'error': str(e)}), 404
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except GatewayError as e:
        console.notifier.error('Failed to load logs')
        return gateway_error(e, 'Failed to load logs')


@bp.route('/scripts/<int:script_id>/schedule', methods=['PUT'])
def schedule_script(script_id):
    """Create or update the recurring schedule of a script"""
    data = request.get_json() or {}
    editor = get_console().schedule_editor(script_id)

    if data.get('preset'):
        editor.select_predefined(data['preset'])
    else:
        editor.set_expression(data.get('cron_expression') or '')

    created = editor.job is None
    try:
        job = editor.submit()
        return jsonify(job.to_dict()), 201 if created else 200
    except ScheduleValidationError as e:
        return jsonify({'error': str(e)}), 400
    except GatewayError as e:
        return gateway_error(e, 'Failed to update schedule')


@bp.route('/schedules/presets', methods=['GET'])
def get_schedule_presets():
    """List the predefined schedules"""
    return jsonify(COMMON_SCHEDULES)


@bp.route('/schedules/validate', methods=['POST'])
def validate_schedule():
    """Check a cron expression without saving it"""
    data = request.get_json() or {}
    expression = data.get('cron_expression') or ''

    error = validate_cron(expression)
    if error:
        return jsonify({'valid': False, 'error': error})
    return jsonify({'valid': True, 'error': None, 'fields': parse_cron_expression(expression)})


@bp.route('/jobs', methods=['GET'])
def get_jobs():
    """List scheduled jobs"""
    registry = get_console().registry

    try:
        jobs = registry.refresh()
        return jsonify([job.to_dict() for job in jobs])
    except GatewayError as e:
        return gateway_error(e, 'Failed to load scheduled jobs')


@bp.route('/jobs/<int:id>/toggle', methods=['POST'])
def toggle_job_status(id):
    """Toggle a job's enabled status (pause/resume)"""
    console = get_console()
    job = console.registry.get(id)
    if job is None:
        # Nothing loaded yet or the cache is stale
        try:
            console.registry.refresh()
        except GatewayError as e:
            return gateway_error(e, 'Failed to load scheduled jobs')
        job = console.registry.get(id)
    if job is None:
        return jsonify({'error': 'Job not found'}), 404

    try:
        job = console.toggle_schedule(job.script_id)
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except GatewayError as e:
        return gateway_error(e, 'Failed to update job status')

    if job is None:
        return jsonify({'error': 'Job no longer exists'}), 404
    return jsonify(job.to_dict())


@bp.route('/products/search', methods=['GET'])
def search_products():
    """Search products directly, without debouncing"""
    catalog = get_console().catalog

    try:
        data = catalog.search(
            q=request.args.get('q', type=str),
            limit=request.args.get('limit', type=int),
            offset=request.args.get('offset', default=0, type=int),
            sort_by=request.args.get('sort_by', type=str),
            sort_order=request.args.get('sort_order', type=str)
        )
        return jsonify(data)
    except SearchValidationError as e:
        return jsonify({'error': str(e)}), 400
    except GatewayError as e:
        return gateway_error(e, 'Search failed')


@bp.route('/products/search/term', methods=['POST'])
def set_search_term():
    """Update the search box; the request is sent once typing settles"""
    data = request.get_json() or {}
    search = get_console().search

    try:
        error = search.set_term(data.get('q') or '', data.get('sort_by'), data.get('sort_order'))
    except SearchValidationError as e:
        return jsonify({'error': str(e)}), 400

    if error:
        return jsonify({'error': error}), 400
    return jsonify(search.to_dict()), 202


@bp.route('/products/search/results', methods=['GET'])
def get_search_results():
    """Get the state of the debounced search"""
    return jsonify(get_console().search.to_dict())


@bp.route('/products/search/more', methods=['POST'])
def load_more_results():
    """Append the next page of results"""
    search = get_console().search
    search.load_more()
    return jsonify(search.to_dict())


@bp.route('/products/product-info', methods=['GET'])
def get_product_info():
    """Get a product with its prices across retailers"""
    catalog = get_console().catalog

    try:
        data = catalog.product_info(
            request.args.get('identifier_type', default='nobb', type=str),
            request.args.get('code', default='', type=str)
        )
        return jsonify(data)
    except SearchValidationError as e:
        return jsonify({'error': str(e)}), 400
    except GatewayError as e:
        return gateway_error(e, 'Failed to fetch product info')


@bp.route('/products/stats', methods=['GET'])
def get_basic_stats():
    """Get product database statistics"""
    try:
        return jsonify(get_console().catalog.basic_stats())
    except GatewayError as e:
        return gateway_error(e, 'Failed to fetch basic stats')


@bp.route('/notifications', methods=['GET'])
def get_notifications():
    """Drain pending operator notifications"""
    notifications = get_console().notifier.drain()
    return jsonify([n.to_dict() for n in notifications])


# Error handlers
@bp.errorhandler(404)
def not_found_error(error):
    return jsonify({'error': 'Not found'}), 404


@bp.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500
