"""
Membership Lifecycle Component Tests

Service classes tested against an in-memory repository, a mock plan
catalog and a recording event bus.

Usage:
    pytest tests/component/membership_lifecycle -v
"""
