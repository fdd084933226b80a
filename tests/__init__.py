"""
recordsync test suite.

This package contains:
- unit/: Unit tests (no network, temporary SQLite files)
- integration/: Orchestrator, share acceptance and HTTP tests against
  the in-memory remote backend
"""
