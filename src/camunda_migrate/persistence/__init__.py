"""Mapping table and history store persistence."""
