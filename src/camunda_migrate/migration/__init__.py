"""Migrators, validation and the migration engine."""
