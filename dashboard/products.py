# dashboard/products.py
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from apscheduler.jobstores.base import JobLookupError

from dashboard.common.api_client import ApiClient, GatewayError, describe_error
from dashboard.utils.logging_config import setup_logging

logger = setup_logging('products')

SORT_FIELDS = ('name', 'price', 'retailer_count')
SORT_ORDERS = ('asc', 'desc')
IDENTIFIER_TYPES = ('nobb', 'ean')

SEARCH_JOB_ID = 'product_search'


class SearchValidationError(ValueError):
    """Search parameters rejected before any request is made"""


class ProductCatalog:
    """Product search, detail and statistics from the backend"""

    def __init__(self, client: ApiClient, min_length: int = 2, page_size: int = 20):
        self.client = client
        self.min_length = min_length
        self.page_size = page_size

    def validate_term(self, term: Optional[str]) -> Optional[str]:
        if term and len(term.strip()) < self.min_length:
            return f"Search term is too short: minimum {self.min_length} characters"
        return None

    @staticmethod
    def validate_sort(sort_by: Optional[str], sort_order: Optional[str]) -> None:
        if sort_by is not None and sort_by not in SORT_FIELDS:
            raise SearchValidationError(f"Invalid sort field: {sort_by}")
        if sort_order is not None and sort_order not in SORT_ORDERS:
            raise SearchValidationError(f"Invalid sort order: {sort_order}")

    def search(self, q: Optional[str] = None, limit: Optional[int] = None, offset: int = 0,
               sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> Dict[str, Any]:
        error = self.validate_term(q)
        if error:
            raise SearchValidationError(error)
        self.validate_sort(sort_by, sort_order)
        if offset < 0:
            raise SearchValidationError('Offset must not be negative')

        params = {
            'q': q.strip() if q else None,
            'limit': limit or self.page_size,
            'offset': offset,
            'sort_by': sort_by,
            'sort_order': sort_order if sort_by else None,
        }
        data = self.client.search_products(**params)
        logger.info(f"Product search {params} returned {data.get('total', 0) if isinstance(data, dict) else 0} results")
        return data

    def product_info(self, identifier_type: str, code: str) -> Dict[str, Any]:
        if identifier_type not in IDENTIFIER_TYPES:
            raise SearchValidationError(f"Invalid identifier type: {identifier_type}")
        if not code or not code.strip():
            raise SearchValidationError('Product code is required')
        return self.client.product_info(identifier_type, code.strip())

    def basic_stats(self) -> Dict[str, Any]:
        return self.client.basic_stats()


class ProductSearch:
    """
    Debounced search box state.

    Every accepted keystroke replaces the pending search job, so the request
    only goes out once the term has been stable for the debounce window.
    """

    def __init__(self, catalog: ProductCatalog, scheduler, debounce: float = 0.5):
        self.catalog = catalog
        self.scheduler = scheduler
        self.debounce = debounce
        self.term = ''
        self.offset = 0
        self.sort_by: Optional[str] = None
        self.sort_order: Optional[str] = None
        self.results: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.validation_error: Optional[str] = None
        self.is_loading = False
        self._generation = 0
        self._lock = threading.Lock()

    def set_term(self, term: str, sort_by: Optional[str] = None,
                 sort_order: Optional[str] = None) -> Optional[str]:
        """
        Record a new search term and schedule the debounced request

        Returns:
            The validation message if the term was rejected, otherwise None
        """
        term = (term or '').strip()
        self.catalog.validate_sort(sort_by, sort_order)
        with self._lock:
            self.term = term
            self.offset = 0
            self.sort_by = sort_by
            self.sort_order = sort_order
            self._generation += 1
            generation = self._generation
            self.validation_error = self.catalog.validate_term(term)

        self._cancel_pending()
        if self.validation_error:
            return self.validation_error

        if not term:
            # Clearing the box lists everything right away
            self._execute(generation)
            return None

        self.scheduler.add_job(
            func=self._execute,
            trigger='date',
            run_date=datetime.now(timezone.utc) + timedelta(seconds=self.debounce),
            args=[generation],
            id=SEARCH_JOB_ID,
            replace_existing=True,
        )
        return None

    def load_more(self) -> Optional[Dict[str, Any]]:
        """Fetch the next page immediately and append it to the results"""
        with self._lock:
            if not self.results or not self.results.get('has_more'):
                return self.results
            generation = self._generation
            next_offset = self.offset + self.catalog.page_size
        self._execute(generation, append=True, offset=next_offset)
        return self.results

    def _cancel_pending(self) -> None:
        try:
            self.scheduler.remove_job(SEARCH_JOB_ID)
        except JobLookupError:
            pass

    def _execute(self, generation: int, append: bool = False,
                 offset: Optional[int] = None) -> None:
        with self._lock:
            if generation != self._generation:
                return
            term = self.term
            if offset is None:
                offset = self.offset
            sort_by, sort_order = self.sort_by, self.sort_order
            self.is_loading = True

        try:
            data = self.catalog.search(q=term or None, offset=offset,
                                       sort_by=sort_by, sort_order=sort_order)
            error = None
        except GatewayError as e:
            logger.error(f"Product search for '{term}' failed: {e}")
            data, error = None, describe_error(e, 'Search failed')

        with self._lock:
            self.is_loading = False
            if generation != self._generation:
                return
            self.error = error
            if data is None:
                return
            # The offset only advances once its page has arrived
            self.offset = offset
            if append and self.results:
                merged = dict(data)
                merged['items'] = list(self.results.get('items', [])) + list(data.get('items', []))
                self.results = merged
            else:
                self.results = data

    def shutdown(self) -> None:
        with self._lock:
            self._generation += 1
        self._cancel_pending()

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'term': self.term,
                'offset': self.offset,
                'is_loading': self.is_loading,
                'error': self.error,
                'validation_error': self.validation_error,
                'results': self.results,
            }
