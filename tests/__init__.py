"""
DoseLedger Test Suite
=====================

This package contains all tests for the DoseLedger medication event system.

Test Structure:
- test_tools/: Clock, timezone and occurrence planner tests
- test_services/: Event store, cascade delete, mirror sync, dispatch and cleanup tests
- test_actions/: Reminder, missed-dose and daily archive job tests
- test_api/: API endpoint tests for FastAPI routes
- test_scripts/: Operator script tests
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_actions/

    # Run only API tests
    pytest -m "api"
"""
