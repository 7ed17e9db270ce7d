"""
Tests Package - Unit Tests

Test structure:
- tests/unit/ - Fast, isolated unit tests (mocked HTTP, temporary SQLite)
- tests/factories.py - Shared test data builders
- tests/conftest.py - Pytest configuration and fixtures
"""
