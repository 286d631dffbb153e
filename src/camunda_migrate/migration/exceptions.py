"""Migrator exceptions and skip reasons."""

from typing import List, NamedTuple, Optional

from ..persistence.models import EntityType


SKIP_REASON_MISSING_PROCESS_DEFINITION = 'Missing process definition'
SKIP_REASON_MISSING_PARENT_PROCESS_INSTANCE = 'Missing parent process instance'
SKIP_REASON_MISSING_ROOT_PROCESS_INSTANCE = 'Missing root process instance'
SKIP_REASON_MISSING_PROCESS_INSTANCE = 'Missing process instance'
SKIP_REASON_MISSING_FLOW_NODE = 'Missing flow node'
SKIP_REASON_MISSING_SCOPE_KEY = 'Missing scope key'
SKIP_REASON_MISSING_DECISION_DEFINITION = 'Missing decision definition'
SKIP_REASON_MISSING_DECISION_REQUIREMENTS = 'Missing decision requirements definition'
SKIP_REASON_MISSING_PARENT_DECISION_INSTANCE = 'Missing parent decision instance'
SKIP_REASON_MISSING_JOB_REFERENCE = 'Missing job reference'
SKIP_REASON_BELONGS_TO_SKIPPED_TASK = 'Belongs to a skipped task'
SKIP_REASON_STANDALONE_USER_TASK = 'C7 standalone user tasks not supported in C8.'
SKIP_REASON_CMMN_VARIABLE = 'C7 CMMN variables not supported in C8.'
SKIP_REASON_MISSING_SOURCE_ENTITY = 'Source entity no longer exists'
SKIP_REASON_PROCESS_INSTANCE_NOT_RUNNING = 'Process instance no longer running on the source'


class MigratorError(Exception):
    """Base exception for migration errors."""

    pass


class PaginationError(MigratorError):
    """Pagination was used incorrectly."""

    pass


class EntitySkippedError(MigratorError):
    """An entity cannot be migrated and is recorded as skipped."""

    def __init__(self, entity_id: str, reason: str):
        """Initialize skip error.

        Args:
            entity_id: Source id of the skipped entity
            reason: Skip reason persisted with the mapping record
        """
        super().__init__(reason)
        self.entity_id = entity_id
        self.reason = reason


class ValidationError(MigratorError):
    """A source instance is structurally incompatible with its target definition."""

    pass


class ConversionError(MigratorError):
    """A transformer failed to convert an entity."""

    def __init__(self, transformer: str, entity_id: str, message: str):
        """Initialize conversion error.

        Args:
            transformer: Name of the failing transformer
            entity_id: Source id of the entity being converted
            message: Underlying failure description
        """
        super().__init__(
            f'Transformer [{transformer}] failed for entity [{entity_id}]: {message}'
        )
        self.transformer = transformer
        self.entity_id = entity_id
        self.message = message


class UnsupportedVariableTypeError(MigratorError):
    """A variable value has a type the target engine cannot represent."""

    def __init__(self, name: str, type_name: str, message: str):
        """Initialize unsupported type error.

        Args:
            name: Variable name
            type_name: Declared source type of the variable
            message: Failure description
        """
        super().__init__(message)
        self.name = name
        self.type_name = type_name


class VariableInterceptorError(MigratorError):
    """A variable interceptor failed on a variable."""

    def __init__(self, interceptor: str, name: str, message: str):
        super().__init__(f'Interceptor [{interceptor}] failed for variable [{name}]: {message}')
        self.interceptor = interceptor
        self.name = name


class MappingStoreError(MigratorError):
    """The mapping table could not be read or written."""

    pass


class CompensationRecord(NamedTuple):
    """A target-side entity created for a mapping record that failed to persist."""

    entity_type: EntityType
    source_id: str
    target_key: int


class BatchFlushError(MappingStoreError):
    """A batch of mapping records could not be written.

    ``compensation`` lists the target keys created for the lost records so
    the caller can delete or cancel them.
    """

    def __init__(
        self,
        message: str,
        compensation: Optional[List[CompensationRecord]] = None,
    ):
        super().__init__(message)
        self.compensation = list(compensation or [])
