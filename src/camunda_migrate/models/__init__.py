"""Data models for Camunda 7 entities and Camunda 8 records."""

from .source import SOURCE_MODELS, ActivityInstance, SourceEntity, TypedValue
from .target import DEFAULT_TENANT, HistoryRecord, ModelBuilder, TargetRecord

__all__ = [
    'SOURCE_MODELS',
    'ActivityInstance',
    'SourceEntity',
    'TypedValue',
    'DEFAULT_TENANT',
    'HistoryRecord',
    'ModelBuilder',
    'TargetRecord',
]
