"""
segsnap Test Suite.

This package contains:
- unit/: Unit tests (in-memory index and repository, no external services)
- integration/: Integration tests (local filesystem index and repository)
"""
