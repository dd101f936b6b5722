"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - integration/: Repository tests (real PostgreSQL, skipped without one)
    - component/  : Service tests (mocked repository, plan client, event bus)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests (pure functions, no I/O)")
    config.addinivalue_line("markers", "component: Component tests (mocked dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (real PostgreSQL)")
    config.addinivalue_line("markers", "requires_db: Requires a running PostgreSQL database")
