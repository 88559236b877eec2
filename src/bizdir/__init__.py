"""
Business directory client-side caching layer.

Named in-memory caches with TTL, tag invalidation and priority eviction,
warmup orchestration, and a caching API client for the Supabase backend.
"""

__version__ = "1.0.0"
