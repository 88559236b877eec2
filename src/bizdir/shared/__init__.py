"""Shared infrastructure: configuration, logging, metrics and caching."""
