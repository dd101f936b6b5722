#!/usr/bin/env python3
"""
Core Module

Shared infrastructure for the membership lifecycle service.

COMPONENTS:
    - config/: dataclass configuration loaded from the environment
    - logger.py: process-wide logging setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS event bus for event-driven integration
"""

__version__ = "1.0.0"
