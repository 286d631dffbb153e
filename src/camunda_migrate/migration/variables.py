"""Conversion of Camunda 7 typed values into Camunda 8 variable values."""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from loguru import logger

from ..conversion.registry import load_extension
from ..models.source import TypedValue
from ..persistence.models import EntityType
from ..utils.dates import format_date, parse_date
from .exceptions import MigratorError, UnsupportedVariableTypeError, VariableInterceptorError

LEGACY_ID_VAR_NAME = 'legacyId'

JSON_DATA_FORMAT = 'application/json'
JAVA_SERIALIZED_DATA_FORMAT = 'application/x-java-serialized-object'

BYTE_ARRAY_UNSUPPORTED_ERROR = "Variable of type 'byte[]' is unsupported in C8."
FILE_TYPE_UNSUPPORTED_ERROR = "Variable of type 'file' is unsupported in C8."
JAVA_SERIALIZED_UNSUPPORTED_ERROR = (
    "Objects serialized as 'application/x-java-serialized-object' are unsupported in C8."
)
GENERIC_TYPE_UNSUPPORTED_ERROR = "Variable of type '{}' is unsupported in C8."
JSON_DESERIALIZATION_ERROR = 'Error while deserializing JSON into Map type.'

PASS_THROUGH_TYPES = {'null', 'boolean', 'short', 'integer', 'long', 'double', 'string'}


class VariableContext:
    """One variable on its way to the target.

    ``value`` starts as the built-in conversion of ``typed`` and may be
    replaced by interceptors through ``set_value``.
    """

    def __init__(self, name: str, typed: TypedValue, entity_type: EntityType, value: Any = None):
        self.name = name
        self.typed = typed
        self.entity_type = entity_type
        self.value = value
        self.modified = False

    @property
    def type_name(self) -> str:
        return (self.typed.type or 'Null').lower()

    @property
    def source_value(self) -> Any:
        return self.typed.value

    def set_value(self, value: Any) -> None:
        self.value = value
        self.modified = True

    def is_history(self) -> bool:
        return self.entity_type in EntityType.history_types()

    def is_runtime(self) -> bool:
        return self.entity_type == EntityType.RUNTIME_PROCESS_INSTANCE


class VariableInterceptor(ABC):
    """Adjusts converted variable values before they reach the target.

    ``value_types`` holds lower-case source type names such as ``object``
    or ``date``; ``entity_types`` holds the entity types whose variables are
    seen. An empty set matches everything.
    """

    value_types: FrozenSet[str] = frozenset()
    entity_types: FrozenSet[EntityType] = frozenset()

    @property
    def name(self) -> str:
        return type(self).__name__

    def accepts(self, context: VariableContext) -> bool:
        if self.value_types and context.type_name not in self.value_types:
            return False
        if self.entity_types and context.entity_type not in self.entity_types:
            return False
        return True

    @abstractmethod
    def execute(self, context: VariableContext) -> None:
        """Inspect ``context`` and call ``set_value`` to replace the value."""
        pass


def load_interceptor(path: str) -> VariableInterceptor:
    """Instantiate an interceptor from a ``package.module:ClassName`` path."""
    return load_extension(path, VariableInterceptor)


class VariableService:
    """Converts typed values and collects the variables of runtime scopes."""

    def __init__(self, source=None, interceptors: Optional[Iterable[VariableInterceptor]] = None):
        """Initialize variable service.

        Args:
            source: Source reader used to fetch scope variables
            interceptors: Run in the given order after the built-in conversion
        """
        self.source = source
        self.interceptors: List[VariableInterceptor] = list(interceptors or [])
        self.logger = logger.bind(component='VariableService')

    def register(self, interceptor: VariableInterceptor) -> VariableInterceptor:
        self.interceptors.append(interceptor)
        return interceptor

    def intercept(
        self,
        name: str,
        typed: TypedValue,
        entity_type: EntityType = EntityType.RUNTIME_PROCESS_INSTANCE,
    ) -> VariableContext:
        """Convert one value and pass it through the matching interceptors.

        Raises:
            UnsupportedVariableTypeError: From the built-in conversion
            VariableInterceptorError: If an interceptor fails
        """
        context = VariableContext(name, typed, entity_type, self._convert_builtin(name, typed))
        for interceptor in self.interceptors:
            if not interceptor.accepts(context):
                continue
            self.logger.trace(f'Running {interceptor.name} on variable {name}')
            try:
                interceptor.execute(context)
            except MigratorError:
                raise
            except Exception as e:
                self.logger.debug(f'{interceptor.name} failed for variable {name}: {e}')
                raise VariableInterceptorError(interceptor.name, name, str(e)) from e
        return context

    def convert_value(
        self,
        name: str,
        typed: TypedValue,
        entity_type: EntityType = EntityType.RUNTIME_PROCESS_INSTANCE,
    ) -> Any:
        """Convert one typed value into a plain Camunda 8 value.

        Raises:
            UnsupportedVariableTypeError: For bytes, files, Java serialized
                objects and any other type without a Camunda 8 equivalent
            VariableInterceptorError: If an interceptor fails
        """
        return self.intercept(name, typed, entity_type).value

    def _convert_builtin(self, name: str, typed: TypedValue) -> Any:
        type_name = (typed.type or 'Null').lower()

        if type_name in PASS_THROUGH_TYPES:
            return typed.value

        if type_name == 'date':
            return self._convert_date(name, typed.value)

        if type_name == 'json':
            return self._parse_json(name, 'Json', typed.value)

        if type_name == 'object':
            data_format = typed.serialization_data_format
            if data_format == JSON_DATA_FORMAT:
                return self._parse_json(name, 'Object', typed.value)
            if data_format == JAVA_SERIALIZED_DATA_FORMAT:
                raise UnsupportedVariableTypeError(
                    name, typed.type, JAVA_SERIALIZED_UNSUPPORTED_ERROR
                )
            raise UnsupportedVariableTypeError(
                name,
                typed.type,
                GENERIC_TYPE_UNSUPPORTED_ERROR.format(f'Object ({data_format})'),
            )

        if type_name == 'bytes':
            raise UnsupportedVariableTypeError(name, typed.type, BYTE_ARRAY_UNSUPPORTED_ERROR)

        if type_name == 'file':
            raise UnsupportedVariableTypeError(name, typed.type, FILE_TYPE_UNSUPPORTED_ERROR)

        raise UnsupportedVariableTypeError(
            name, typed.type, GENERIC_TYPE_UNSUPPORTED_ERROR.format(typed.type)
        )

    def convert_history_value(self, name: str, typed: TypedValue) -> Optional[str]:
        """Convert a typed value into the JSON text stored in history."""
        context = self.intercept(name, typed, EntityType.HISTORY_VARIABLE)
        if (
            not context.modified
            and context.type_name == 'json'
            and isinstance(typed.value, str)
        ):
            return typed.value
        if context.value is None:
            return None
        return json.dumps(context.value)

    def convert_variables(
        self,
        variables: Dict[str, TypedValue],
        entity_type: EntityType = EntityType.RUNTIME_PROCESS_INSTANCE,
    ) -> Dict[str, Any]:
        """Convert a map of typed values, failing on the first unsupported one."""
        return {
            name: self.convert_value(name, typed, entity_type)
            for name, typed in variables.items()
        }

    def get_global_variables(self, process_instance_id: str) -> Dict[str, Any]:
        """Process-level variables plus the ``legacyId`` tracking variable."""
        raw = self.source.get_variables(process_instance_id)
        variables = self.convert_variables(raw)
        variables[LEGACY_ID_VAR_NAME] = process_instance_id
        self.logger.debug(
            f'Converted {len(raw)} global variables of process instance {process_instance_id}'
        )
        return variables

    def get_local_variables(
        self, activity_instance_id: str, sub_process_instance_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Variables local to an activity instance.

        When the activity is a call activity, ``sub_process_instance_id`` is
        passed on as ``legacyId`` so the called instance can be correlated.
        """
        raw = self.source.get_local_variables(activity_instance_id)
        variables = self.convert_variables(raw)
        if sub_process_instance_id is not None:
            variables[LEGACY_ID_VAR_NAME] = sub_process_instance_id
        return variables

    def _convert_date(self, name: str, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, datetime):
            return format_date(value)
        try:
            return format_date(parse_date(str(value)))
        except ValueError as e:
            raise UnsupportedVariableTypeError(
                name, 'Date', f'Invalid date value [{value}]: {e}'
            ) from e

    def _parse_json(self, name: str, type_name: str, value: Any) -> Any:
        if value is None or not isinstance(value, (str, bytes)):
            return value
        try:
            return json.loads(value)
        except ValueError as e:
            self.logger.debug(f'Could not parse JSON of variable {name}: {e}')
            raise UnsupportedVariableTypeError(
                name, type_name, JSON_DESERIALIZATION_ERROR
            ) from e
