#!/usr/bin/env python3
"""Membership lifecycle business configuration

Regulatory windows, retention offer terms and batch settings.
"""
import os
from dataclasses import dataclass

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class LifecycleConfig:
    """Membership lifecycle settings"""

    service_name: str = "membership_lifecycle_service"
    plan_service_url: str = "http://localhost:8230"
    default_currency: str = "SAR"

    # ===========================================
    # Contracts
    # ===========================================
    contract_number_prefix: str = "LYQ"
    cooling_off_days: int = 7
    default_notice_period_days: int = 30

    # ===========================================
    # Retention
    # ===========================================
    retention_offer_expiry_hours: int = 72
    free_freeze_days: int = 30
    loyalty_discount_percentage: int = 25
    loyalty_discount_months: int = 3
    loyalty_min_tenure_days: int = 90
    reactivation_window_days: int = 90

    # ===========================================
    # Scheduled jobs
    # ===========================================
    batch_page_size: int = 100
    due_cancellations_cron: str = "15 0 * * *"
    due_plan_changes_cron: str = "30 0 * * *"
    expire_offers_cron: str = "0 * * * *"

    @classmethod
    def from_env(cls) -> 'LifecycleConfig':
        """Load lifecycle settings from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "membership_lifecycle_service"),
            plan_service_url=os.getenv("PLAN_SERVICE_URL", "http://localhost:8230"),
            default_currency=os.getenv("DEFAULT_CURRENCY", "SAR"),
            contract_number_prefix=os.getenv("CONTRACT_NUMBER_PREFIX", "LYQ"),
            cooling_off_days=_int(os.getenv("COOLING_OFF_DAYS", "7"), 7),
            default_notice_period_days=_int(os.getenv("DEFAULT_NOTICE_PERIOD_DAYS", "30"), 30),
            retention_offer_expiry_hours=_int(os.getenv("RETENTION_OFFER_EXPIRY_HOURS", "72"), 72),
            free_freeze_days=_int(os.getenv("RETENTION_FREE_FREEZE_DAYS", "30"), 30),
            loyalty_discount_percentage=_int(os.getenv("LOYALTY_DISCOUNT_PERCENTAGE", "25"), 25),
            loyalty_discount_months=_int(os.getenv("LOYALTY_DISCOUNT_MONTHS", "3"), 3),
            loyalty_min_tenure_days=_int(os.getenv("LOYALTY_MIN_TENURE_DAYS", "90"), 90),
            reactivation_window_days=_int(os.getenv("REACTIVATION_WINDOW_DAYS", "90"), 90),
            batch_page_size=_int(os.getenv("BATCH_PAGE_SIZE", "100"), 100),
            due_cancellations_cron=os.getenv("DUE_CANCELLATIONS_CRON", "15 0 * * *"),
            due_plan_changes_cron=os.getenv("DUE_PLAN_CHANGES_CRON", "30 0 * * *"),
            expire_offers_cron=os.getenv("EXPIRE_OFFERS_CRON", "0 * * * *"),
        )
