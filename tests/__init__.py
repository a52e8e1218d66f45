"""
Tests Package - Unit and Integration Tests

Test structure:
- tests/conftest.py - Shared pytest fixtures (temporary SQLite store, cache, clock)
- tests/test_*.py - One module per component

SQLite and the filesystem cache run for real against tmp_path; network,
Redis and the LLM API are replaced with mocks.
"""
