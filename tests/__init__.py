"""
smartrepo Test Suite.

This package contains:
- unit/: Unit tests (in-memory backend, no external dependencies)
- integration/: Integration tests (SmartRepo over SQLite)
"""
