"""Camunda 8 history records kept in the target secondary storage."""

import threading
from typing import Any, Dict, List, Optional, Type

from loguru import logger
from sqlalchemy import MetaData, delete, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..api.exceptions import EngineAPIError
from ..api.interface import HistoryWriter
from ..models.target import (
    AuditLogRecord,
    DecisionDefinitionRecord,
    DecisionInstanceRecord,
    DecisionRequirementsRecord,
    FlowNodeRecord,
    HistoryRecord,
    IncidentRecord,
    JobRecord,
    ProcessDefinitionRecord,
    ProcessInstanceRecord,
    UserTaskRecord,
    VariableRecord,
)
from .database import get_session
from .models import history_table

RECORD_TYPES: Dict[str, Type[HistoryRecord]] = {
    cls.KIND: cls
    for cls in (
        ProcessDefinitionRecord,
        ProcessInstanceRecord,
        FlowNodeRecord,
        UserTaskRecord,
        VariableRecord,
        IncidentRecord,
        JobRecord,
        AuditLogRecord,
        DecisionRequirementsRecord,
        DecisionDefinitionRecord,
        DecisionInstanceRecord,
    )
}

# fields copied into the element_id column, first non-null wins
ELEMENT_ID_FIELDS = ('flow_node_id', 'element_id', 'process_definition_id')


class TargetHistoryStore(HistoryWriter):
    """Writes history records into one table keyed by a generated record key.

    Keys are unique across record kinds and increase monotonically, which
    matches how the target engine assigns keys.
    """

    def __init__(self, engine: Engine, table_prefix: str = '', auto_ddl: bool = True):
        self.engine = engine
        self.metadata = MetaData()
        self.table = history_table(self.metadata, table_prefix)
        self.logger = logger.bind(component='TargetHistoryStore')
        self._lock = threading.Lock()
        self._last_key: Optional[int] = None

        if auto_ddl:
            try:
                self.metadata.create_all(self.engine)
            except SQLAlchemyError as e:
                raise EngineAPIError(f'Failed to create history table: {e}') from e

    def next_key(self) -> int:
        """Reserve the next record key."""
        with self._lock:
            if self._last_key is None:
                stmt = select(func.max(self.table.c.record_key))
                rows = self._fetch(stmt, 'read highest record key')
                self._last_key = rows[0][0] or 0
            self._last_key += 1
            return self._last_key

    def insert(self, record: HistoryRecord) -> int:
        key = record.key
        if key is None:
            raise ValueError(f'{type(record).__name__} has no key')

        values = {
            'record_key': key,
            'kind': record.KIND,
            'process_instance_key': getattr(record, 'process_instance_key', None),
            'element_id': self._element_id(record),
            'tenant_id': record.tenant_id,
            'payload': record.json(),
        }
        self._write(insert(self.table).values(**values), f'insert {record.KIND} {key}')
        self.logger.trace(f'Inserted {record.KIND} {key}')
        return key

    def find(self, kind: str, key: int) -> Optional[HistoryRecord]:
        t = self.table
        stmt = select(t.c.payload).where(t.c.kind == kind, t.c.record_key == key)
        rows = self._fetch(stmt, f'find {kind} {key}')
        if not rows:
            return None
        return RECORD_TYPES[kind].parse_raw(rows[0].payload)

    def search(self, kind: str, **filters: Any) -> List[HistoryRecord]:
        """Records of a kind matching the indexed columns given as filters.

        Supported filters are ``process_instance_key``, ``element_id`` and
        ``tenant_id``.
        """
        t = self.table
        stmt = select(t.c.payload).where(t.c.kind == kind)
        for column, value in filters.items():
            if column not in ('process_instance_key', 'element_id', 'tenant_id'):
                raise ValueError(f'Cannot filter history records by {column}')
            stmt = stmt.where(t.c[column] == value)
        stmt = stmt.order_by(t.c.record_key.asc())
        rows = self._fetch(stmt, f'search {kind}')
        return [RECORD_TYPES[kind].parse_raw(row.payload) for row in rows]

    def delete(self, kind: str, key: int) -> bool:
        t = self.table
        stmt = delete(t).where(t.c.kind == kind, t.c.record_key == key)
        return self._write(stmt, f'delete {kind} {key}') > 0

    def count(self, kind: Optional[str] = None) -> int:
        t = self.table
        stmt = select(func.count()).select_from(t)
        if kind is not None:
            stmt = stmt.where(t.c.kind == kind)
        return int(self._fetch(stmt, 'count history records')[0][0])

    @staticmethod
    def _element_id(record: HistoryRecord) -> Optional[str]:
        for field in ELEMENT_ID_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                return value
        return None

    def _fetch(self, stmt, action: str) -> list:
        try:
            with get_session(self.engine) as session:
                return session.execute(stmt).all()
        except SQLAlchemyError as e:
            raise EngineAPIError(f'Failed to {action}: {e}') from e

    def _write(self, stmt, action: str) -> int:
        try:
            with get_session(self.engine) as session:
                return session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise EngineAPIError(f'Failed to {action}: {e}') from e
