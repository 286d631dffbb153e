"""Entity type registry and table definitions for the migrator database."""

from enum import Enum
from typing import List, Set

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)


class EntityType(str, Enum):
    """Kinds of records the migrator tracks in the mapping table."""

    HISTORY_PROCESS_DEFINITION = 'HISTORY_PROCESS_DEFINITION'
    HISTORY_PROCESS_INSTANCE = 'HISTORY_PROCESS_INSTANCE'
    HISTORY_FLOW_NODE = 'HISTORY_FLOW_NODE'
    HISTORY_USER_TASK = 'HISTORY_USER_TASK'
    HISTORY_VARIABLE = 'HISTORY_VARIABLE'
    HISTORY_EXTERNAL_TASK = 'HISTORY_EXTERNAL_TASK'
    HISTORY_INCIDENT = 'HISTORY_INCIDENT'
    HISTORY_JOB = 'HISTORY_JOB'
    HISTORY_AUDIT_LOG = 'HISTORY_AUDIT_LOG'
    HISTORY_DECISION_REQUIREMENT = 'HISTORY_DECISION_REQUIREMENT'
    HISTORY_DECISION_DEFINITION = 'HISTORY_DECISION_DEFINITION'
    HISTORY_DECISION_INSTANCE = 'HISTORY_DECISION_INSTANCE'
    RUNTIME_PROCESS_INSTANCE = 'RUNTIME_PROCESS_INSTANCE'
    TENANT = 'TENANT'
    AUTHORIZATION = 'AUTHORIZATION'

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def history_types(cls) -> List['EntityType']:
        """History types in dependency order."""
        return [t for t in cls if t.name.startswith('HISTORY_')]

    @classmethod
    def identity_types(cls) -> List['EntityType']:
        return [cls.TENANT, cls.AUTHORIZATION]

    @classmethod
    def runtime_types(cls) -> List['EntityType']:
        return [cls.RUNTIME_PROCESS_INSTANCE]

    @classmethod
    def from_name(cls, name: str) -> 'EntityType':
        """Resolve a type from its enum name, case-insensitive.

        Raises:
            ValueError: If no type has that name
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            valid = ', '.join(t.name for t in cls)
            raise ValueError(f'Unknown entity type "{name}". Valid types: {valid}')

    @classmethod
    def names(cls) -> Set[str]:
        return {t.name for t in cls}


_DISPLAY_NAMES = {
    EntityType.HISTORY_PROCESS_DEFINITION: 'Historic Process Definition',
    EntityType.HISTORY_PROCESS_INSTANCE: 'Historic Process Instance',
    EntityType.HISTORY_FLOW_NODE: 'Historic Flow Node',
    EntityType.HISTORY_USER_TASK: 'Historic User Task',
    EntityType.HISTORY_VARIABLE: 'Historic Variable',
    EntityType.HISTORY_EXTERNAL_TASK: 'Historic External Task',
    EntityType.HISTORY_INCIDENT: 'Historic Incident',
    EntityType.HISTORY_JOB: 'Historic Job',
    EntityType.HISTORY_AUDIT_LOG: 'Historic Audit Log',
    EntityType.HISTORY_DECISION_REQUIREMENT: 'Historic Decision Requirement',
    EntityType.HISTORY_DECISION_DEFINITION: 'Historic Decision Definition',
    EntityType.HISTORY_DECISION_INSTANCE: 'Historic Decision Instance',
    EntityType.RUNTIME_PROCESS_INSTANCE: 'Process Instance',
    EntityType.TENANT: 'Tenant',
    EntityType.AUTHORIZATION: 'Authorization',
}


def mapping_table(metadata: MetaData, prefix: str = '') -> Table:
    """Declare the source id to target key mapping table.

    One row per (source_id, entity_type). A non-null target_key marks the
    entity as migrated; a null target_key marks it as skipped.
    """
    name = f'{prefix}MIGRATION_MAPPING'
    return Table(
        name,
        metadata,
        Column('id', Integer, primary_key=True, autoincrement=True),
        Column('source_id', String(255), nullable=False),
        Column('entity_type', String(64), nullable=False),
        Column('target_key', BigInteger, nullable=True),
        Column('create_time', DateTime, nullable=True),
        Column('skip_reason', Text, nullable=True),
        UniqueConstraint('source_id', 'entity_type', name=f'{name}_UQ'),
        Index(f'{name}_RESUME_IDX', 'entity_type', 'create_time', 'source_id'),
    )


def history_table(metadata: MetaData, prefix: str = '') -> Table:
    """Declare the table holding migrated Camunda 8 history records."""
    name = f'{prefix}HISTORY_RECORD'
    return Table(
        name,
        metadata,
        Column('record_key', BigInteger, primary_key=True, autoincrement=False),
        Column('kind', String(64), nullable=False),
        Column('process_instance_key', BigInteger, nullable=True),
        Column('element_id', String(255), nullable=True),
        Column('tenant_id', String(255), nullable=True),
        Column('payload', Text, nullable=False),
        Index(f'{name}_PI_IDX', 'kind', 'process_instance_key'),
    )
