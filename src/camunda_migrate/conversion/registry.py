"""Transformer registry and the conversion service that runs it."""

import importlib
import itertools
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Type, TypeVar

from loguru import logger

from ..migration.exceptions import ConversionError, MigratorError
from ..models.target import TargetRecord
from ..persistence.models import EntityType
from .context import ConversionContext

T = TypeVar('T')


class EntityTransformer(ABC):
    """Populates a target builder from one source entity.

    Subclasses declare the entity ``types`` they accept and a ``priority``;
    lower priorities run first.
    """

    types: FrozenSet[EntityType] = frozenset()
    priority: int = 100

    @property
    def name(self) -> str:
        return type(self).__name__

    def supports(self, entity_type: EntityType) -> bool:
        return entity_type in self.types

    @abstractmethod
    def execute(self, context: ConversionContext) -> None:
        """Populate ``context.builder`` from ``context.entity``."""
        pass


class TransformerRegistry:
    """Transformers ordered by (priority, registration order)."""

    def __init__(self, transformers: Optional[Iterable[EntityTransformer]] = None):
        self._entries: List[Tuple[int, int, EntityTransformer]] = []
        self._sequence = itertools.count()
        self._by_type: Dict[EntityType, List[EntityTransformer]] = {}
        for transformer in transformers or []:
            self.register(transformer)

    def register(self, transformer: EntityTransformer) -> EntityTransformer:
        if not transformer.types:
            raise ValueError(f'Transformer {transformer.name} declares no entity types')
        self._entries.append((transformer.priority, next(self._sequence), transformer))
        self._entries.sort(key=lambda e: (e[0], e[1]))
        self._by_type.clear()
        return transformer

    def unregister(self, name: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e[2].name != name]
        self._by_type.clear()
        return len(self._entries) != before

    def for_type(self, entity_type: EntityType) -> List[EntityTransformer]:
        if entity_type not in self._by_type:
            self._by_type[entity_type] = [
                t for _, _, t in self._entries if t.supports(entity_type)
            ]
        return self._by_type[entity_type]

    def names(self) -> List[str]:
        return [t.name for _, _, t in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


def load_extension(path: str, base: Type[T]) -> T:
    """Instantiate a ``package.module:ClassName`` path that subclasses ``base``."""
    module_name, _, class_name = path.partition(':')
    module = importlib.import_module(module_name)
    extension_cls = getattr(module, class_name)
    if not (isinstance(extension_cls, type) and issubclass(extension_cls, base)):
        raise TypeError(f'{path} is not a {base.__name__}')
    return extension_cls()


def load_transformer(path: str) -> EntityTransformer:
    """Instantiate a transformer from a ``package.module:ClassName`` path."""
    return load_extension(path, EntityTransformer)


class EntityConversionService:
    """Runs every transformer registered for an entity's type, in order."""

    def __init__(self, registry: TransformerRegistry):
        self.registry = registry
        self.logger = logger.bind(component='EntityConversionService')

    def convert(self, context: ConversionContext) -> TargetRecord:
        """Run the pipeline and build the record.

        Raises:
            ConversionError: If a transformer fails or the collected fields
                do not form a valid record
            MigratorError: Skip, variable and interceptor errors raised by
                a transformer pass through unchanged
        """
        self.run(context)
        try:
            return context.builder.build()
        except ValueError as e:
            raise ConversionError('build', context.entity_id, str(e)) from e

    def run(self, context: ConversionContext) -> ConversionContext:
        """Run the pipeline without building the record."""
        transformers = self.registry.for_type(context.entity_type)
        if not transformers:
            raise ConversionError(
                'registry',
                context.entity_id,
                f'no transformer registered for {context.entity_type.value}',
            )

        for transformer in transformers:
            self.logger.trace(f'Running {transformer.name} on {context!r}')
            try:
                transformer.execute(context)
            except MigratorError:
                raise
            except Exception as e:
                self.logger.debug(
                    f'{transformer.name} failed for {context.entity_type.value} '
                    f'{context.entity_id}: {e}'
                )
                raise ConversionError(transformer.name, context.entity_id, str(e)) from e
        return context
