"""Camunda 7 and Camunda 8 engine clients."""
