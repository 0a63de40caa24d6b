# dashboard/common/api_client.py
from typing import Any, Dict, List, Optional

import requests

from dashboard.utils.logging_config import setup_logging

logger = setup_logging('api_client')

DEFAULT_ERROR_MESSAGE = 'An error occurred'


class GatewayError(Exception):
    """Base error for calls to the processor backend"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class ApiError(GatewayError):
    """Backend answered with a non-2xx status"""

    def __init__(self, status: int, message: str):
        super().__init__(message, status)

    def __str__(self):
        return f"HTTP {self.status}: {self.message}"


class GatewayConnectionError(GatewayError):
    """Backend could not be reached"""


class ApiRoutes:
    """URL table of the processor backend"""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api{path}"

    def warehouses(self) -> str:
        return self._url('/warehouses')

    def warehouse_scripts(self, warehouse_id) -> str:
        return self._url(f'/warehouses/{warehouse_id}/scripts')

    def jobs(self) -> str:
        return self._url('/jobs')

    def job(self, job_id) -> str:
        return self._url(f'/jobs/{job_id}')

    def toggle_job(self, job_id) -> str:
        return self._url(f'/jobs/{job_id}/toggle')

    def run_script(self, script_id) -> str:
        return self._url(f'/run_now/{script_id}')

    def execution_status(self, execution_id) -> str:
        return self._url(f'/jobs/execution/{execution_id}/status')

    def script_logs(self, script_id) -> str:
        return self._url(f'/jobs/scripts/{script_id}/logs')

    def execution_logs(self, execution_id) -> str:
        return self._url(f'/jobs/executions/{execution_id}/logs')

    def product_search(self) -> str:
        return self._url('/products/search')

    def product_info(self) -> str:
        return self._url('/products/product-info')

    def basic_stats(self) -> str:
        return self._url('/products/stats/basic')


class ApiClient:
    """Thin JSON-over-REST client for the processor backend.

    Every non-2xx response raises ApiError; 2xx JSON bodies are parsed and
    other bodies are returned as text. There are no retries and no timeout,
    failures reach the caller immediately.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.routes = ApiRoutes(base_url)
        self.session = session or requests.Session()

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None,
                 body: Any = None) -> Any:
        kwargs: Dict[str, Any] = {}
        if params:
            kwargs['params'] = {k: v for k, v in params.items() if v is not None}
        if body is not None:
            kwargs['json'] = body

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise GatewayConnectionError(str(e)) from e

        return self._handle_response(method, url, response)

    @staticmethod
    def _handle_response(method: str, url: str, response: requests.Response) -> Any:
        if not response.ok:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            message = None
            if isinstance(payload, dict):
                message = payload.get('detail') or payload.get('error')
            if not isinstance(message, str) or not message:
                message = DEFAULT_ERROR_MESSAGE
            logger.warning(f"{method} {url} returned {response.status_code}: {message}")
            raise ApiError(response.status_code, message)

        content_type = response.headers.get('content-type', '')
        if 'application/json' in content_type:
            try:
                return response.json()
            except ValueError:
                raise ApiError(response.status_code, 'Malformed JSON in response')
        return response.text

    def get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request('GET', url, params=params)

    def post(self, url: str, body: Any = None) -> Any:
        return self._request('POST', url, body=body)

    def put(self, url: str, body: Any) -> Any:
        return self._request('PUT', url, body=body)

    def patch(self, url: str, body: Any) -> Any:
        return self._request('PATCH', url, body=body)

    def delete(self, url: str) -> Any:
        return self._request('DELETE', url)

    # Warehouses and scripts

    def list_warehouses(self) -> List[Dict[str, Any]]:
        return self.get(self.routes.warehouses())

    def list_warehouse_scripts(self, warehouse_id) -> List[Dict[str, Any]]:
        return self.get(self.routes.warehouse_scripts(warehouse_id))

    # Jobs

    def list_jobs(self, scheduled_only: bool = True) -> List[Dict[str, Any]]:
        params = {'scheduled_only': 'true'} if scheduled_only else None
        return self.get(self.routes.jobs(), params=params)

    def create_job(self, script_id: int, cron_expression: str) -> Dict[str, Any]:
        return self.post(self.routes.jobs(), {'script_id': script_id, 'cron_expression': cron_expression})

    def update_job(self, job_id: int, cron_expression: str) -> Dict[str, Any]:
        return self.put(self.routes.job(job_id), {'cron_expression': cron_expression})

    def toggle_job(self, job_id: int) -> Dict[str, Any]:
        return self.post(self.routes.toggle_job(job_id))

    # Executions

    def run_script(self, script_id: int) -> Dict[str, Any]:
        return self.post(self.routes.run_script(script_id))

    def execution_status(self, execution_id) -> Dict[str, Any]:
        return self.get(self.routes.execution_status(execution_id))

    def script_logs(self, script_id: int, skip: Optional[int] = None,
                    limit: Optional[int] = None) -> Any:
        return self.get(self.routes.script_logs(script_id), params={'skip': skip, 'limit': limit})

    def execution_logs(self, execution_id, level: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.get(self.routes.execution_logs(execution_id), params={'level': level})

    # Products

    def search_products(self, **params) -> Dict[str, Any]:
        return self.get(self.routes.product_search(), params=params)

    def product_info(self, identifier_type: str, code: str) -> Dict[str, Any]:
        return self.get(self.routes.product_info(),
                        params={'identifier_type': identifier_type, 'code': code})

    def basic_stats(self) -> Dict[str, Any]:
        return self.get(self.routes.basic_stats())


def describe_error(error: Exception, fallback: str) -> str:
    """Operator-facing text: the server's message verbatim, a generic line otherwise"""
    if isinstance(error, ApiError) and error.message != DEFAULT_ERROR_MESSAGE:
        return error.message
    return fallback
