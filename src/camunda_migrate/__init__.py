"""Camunda Migration Tool

Migrates runtime process instances, history data and identity records
from a Camunda 7 engine to a Camunda 8 cluster, keeping a persistent
source-to-target key mapping so repeated runs are incremental.
"""

__version__ = '0.1.0'

__all__ = ['__version__']
