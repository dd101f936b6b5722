"""
Membership Lifecycle Service Contracts

Test data factory for membership_lifecycle_service testing.
"""

from .data_contract import LifecycleTestDataFactory

__all__ = ["LifecycleTestDataFactory"]
