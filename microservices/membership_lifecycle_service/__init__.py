"""
Membership Lifecycle Service

Fitness membership lifecycle for the isA platform.

Features:
- Contracts with locked pricing, cooling-off and commitment terms
- Subscription state machine (freeze, notice period, cancellation)
- Cancellation workflow with localized retention offers and exit surveys
- Plan upgrades and downgrades with proration
- Freeze balances with source-tagged grants
- Explicit batch triggers for due cancellations, plan changes and offer expiry
"""

__version__ = "1.0.0"
