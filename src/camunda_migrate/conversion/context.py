"""Per-entity state shared by the transformers of one conversion."""

from typing import Any, Dict, Generic, Optional, TypeVar

from ..models.source import SourceEntity
from ..models.target import ModelBuilder, TargetRecord
from ..persistence.models import EntityType

S = TypeVar('S', bound=SourceEntity)
R = TypeVar('R', bound=TargetRecord)


class ConversionContext(Generic[S, R]):
    """Source entity, target builder and pre-resolved lookups.

    ``lookups`` carries values fetched before the pipeline runs, such as
    resource XML or raw variables, so transformers never do I/O themselves.
    """

    def __init__(
        self,
        entity: S,
        builder: ModelBuilder[R],
        lookups: Optional[Dict[str, Any]] = None,
    ):
        self._entity = entity
        self.builder = builder
        self.lookups: Dict[str, Any] = dict(lookups or {})

    @property
    def entity(self) -> S:
        return self._entity

    @property
    def entity_type(self) -> EntityType:
        return self._entity.TAG

    @property
    def entity_id(self) -> str:
        return self._entity.source_id

    def lookup(self, name: str, default: Any = None) -> Any:
        return self.lookups.get(name, default)

    def __repr__(self) -> str:
        return (
            f'ConversionContext({self.entity_type.value}:{self.entity_id}, '
            f'{self.builder.model_cls.__name__})'
        )
