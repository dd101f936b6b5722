"""
Membership Lifecycle Service Clients

HTTP clients for collaborating services.
"""

from .plan_client import PlanClient

__all__ = ["PlanClient"]
