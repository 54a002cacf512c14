"""
Church Appointments Tests

Running Tests:
    # Unit tests (in-memory store, SQLite for the SQL store)
    pytest tests/unit -v

    # Run one module
    pytest tests/unit/test_conflicts.py -v

    # E2E smoke tests against a running instance
    pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Timezone conversion and DST handling
    - Slot generation and conflict filtering
    - Booking store contract (in-memory and SQLAlchemy)
    - Booking lifecycle and notifications
    - Reminder passes and claims
    - Calendar export
    - HTTP API, authentication and health probes
"""
