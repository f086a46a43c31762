"""Utilities for templates, message formats and caching."""
