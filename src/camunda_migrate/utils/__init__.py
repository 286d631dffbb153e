"""Logging and date helpers."""
