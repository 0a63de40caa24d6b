# dashboard/directory.py
import threading
from typing import List, Optional

from dashboard.common.api_client import ApiClient, GatewayError, describe_error
from dashboard.common.types import Execution, Script, Warehouse
from dashboard.utils.logging_config import setup_logging

logger = setup_logging('directory')


class WarehouseDirectory:
    """Warehouses known to the backend"""

    def __init__(self, client: ApiClient):
        self.client = client
        self.warehouses: List[Warehouse] = []
        self.is_loading = False
        self.error: Optional[str] = None

    def refresh(self) -> List[Warehouse]:
        self.is_loading = True
        try:
            data = self.client.list_warehouses()
            self.warehouses = [Warehouse.from_dict(item) for item in data]
            self.error = None
        except GatewayError as e:
            logger.error(f"Failed to fetch warehouses: {e}")
            self.error = describe_error(e, 'Failed to fetch warehouses')
            self.warehouses = []
        finally:
            self.is_loading = False
        return self.warehouses

    def get(self, warehouse_id: int) -> Optional[Warehouse]:
        return next((w for w in self.warehouses if w.id == warehouse_id), None)


class ScriptDirectory:
    """
    Read-only cache of the scripts of the selected warehouse.

    Fetches happen on selection change and on refresh(). Overlapping fetches
    are not coalesced: whichever response arrives last replaces the cache,
    even when it belongs to a warehouse that is no longer selected.
    """

    def __init__(self, client: ApiClient):
        self.client = client
        self.warehouse_id: Optional[int] = None
        self.scripts: List[Script] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self._lock = threading.RLock()

    def select(self, warehouse_id: Optional[int]) -> List[Script]:
        """Switch to another warehouse and fetch its scripts"""
        with self._lock:
            changed = warehouse_id != self.warehouse_id
            self.warehouse_id = warehouse_id
        if changed:
            logger.info(f"Selected warehouse {warehouse_id}")
        return self.refresh()

    def refresh(self) -> List[Script]:
        warehouse_id = self.warehouse_id
        if not warehouse_id:
            with self._lock:
                self.scripts = []
                self.error = None
            return []

        self.is_loading = True
        try:
            data = self.client.list_warehouse_scripts(warehouse_id)
            scripts = [Script.from_dict(item, warehouse_id) for item in data]
            with self._lock:
                self.scripts = scripts
                self.error = None
            logger.info(f"Loaded {len(scripts)} scripts for warehouse {warehouse_id}")
        except GatewayError as e:
            logger.error(f"Failed to fetch scripts for warehouse {warehouse_id}: {e}")
            with self._lock:
                self.error = describe_error(e, 'Failed to fetch scripts')
                self.scripts = []
        finally:
            self.is_loading = False
        return self.scripts

    def get(self, script_id: int) -> Optional[Script]:
        with self._lock:
            return next((s for s in self.scripts if s.id == script_id), None)

    def script_ids(self) -> List[int]:
        with self._lock:
            return [s.id for s in self.scripts]

    def apply_execution(self, script_id: int, execution: Execution) -> bool:
        """Reflect an execution on the cached script; last write wins"""
        with self._lock:
            script = next((s for s in self.scripts if s.id == script_id), None)
            if script is None:
                return False
            if execution.timestamp:
                script.last_execution_time = execution.timestamp
            script.last_execution = execution
        return True
