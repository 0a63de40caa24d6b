# dashboard/common/types.py

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Any, Optional


class ScriptType(str, Enum):
    SPIDER = 'spider'
    PROCESSOR = 'processor'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'ScriptType':
        """Scripts whose type the backend does not report are spiders"""
        try:
            return cls(value)
        except ValueError:
            return cls.SPIDER


class ExecutionStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    UNKNOWN = 'unknown'


@dataclass
class Warehouse:
    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Warehouse':
        return cls(id=data['id'], name=data['name'], description=data.get('description'))


@dataclass
class Execution:
    """One run of a script, tracked from trigger to terminal status"""
    execution_id: Any
    script_id: int
    timestamp: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class Script:
    id: int
    name: str
    description: Optional[str] = None
    type: ScriptType = ScriptType.SPIDER
    warehouse_id: Optional[int] = None
    filename: Optional[str] = None
    last_execution_time: Optional[str] = None
    last_execution: Optional[Execution] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], warehouse_id: Optional[int] = None) -> 'Script':
        return cls(
            id=data['id'],
            name=data['name'],
            description=data.get('description'),
            type=ScriptType.parse(data.get('type')),
            warehouse_id=data.get('warehouse_id', warehouse_id),
            filename=data.get('filename'),
            last_execution_time=data.get('last_execution_time'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'type': self.type.value,
            'warehouse_id': self.warehouse_id,
            'filename': self.filename,
            'last_execution_time': self.last_execution_time,
            'last_execution': self.last_execution.to_dict() if self.last_execution else None,
        }


@dataclass
class Job:
    """A persisted binding of a script to a cron schedule"""
    id: int
    job_id: str
    script_id: int
    cron_expression: str
    enabled: bool = True
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Job':
        return cls(
            id=data['id'],
            job_id=data['job_id'],
            script_id=data['script_id'],
            cron_expression=data.get('cron_expression') or '',
            enabled=bool(data.get('enabled', True)),
            created_at=data.get('created_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LogEntry:
    timestamp: str
    level: str
    message: str = ''
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        known = {'timestamp', 'level', 'message'}
        return cls(
            timestamp=data.get('timestamp', ''),
            level=(data.get('level') or 'info').lower(),
            message=data.get('message', ''),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(timestamp=self.timestamp, level=self.level, message=self.message)
        return data
