#!/usr/bin/env python3
"""Modular configuration system for the membership lifecycle service

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- lifecycle_config: Contract, retention and scheduling settings
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .infra_config import InfraConfig
from .lifecycle_config import LifecycleConfig
from .logging_config import LoggingConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

__all__ = [
    'LifecycleConfig',
    'InfraConfig',
    'LoggingConfig',
]
