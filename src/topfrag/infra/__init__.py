"""
TopFrag Infrastructure - persistence and caching.

This module contains:
- database: SQLAlchemy models and the DatabaseManager
- cache: In-process TTL store and the per-match cache manager
- job_store: DemoProcessingJob tracking
"""

__all__: list[str] = []
