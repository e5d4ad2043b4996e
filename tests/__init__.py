"""
NORMWATCH Test Suite
====================

Test organization:
- tests/unit/              - Unit tests (no external dependencies)
- tests/services/          - Service tests (in-memory store, SQLite via aiosqlite)

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest -m "not integration"     # Skip integration tests
"""
