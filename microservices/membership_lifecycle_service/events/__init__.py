"""
Membership Lifecycle Service Events

Publishers and models for membership lifecycle events.
"""

from .models import MembershipLifecycleEvent, MembershipLifecycleEventType
from .publishers import MembershipLifecycleEventPublisher

__all__ = [
    "MembershipLifecycleEvent",
    "MembershipLifecycleEventType",
    "MembershipLifecycleEventPublisher",
]
