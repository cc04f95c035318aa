"""Logging and HTTP helpers."""
