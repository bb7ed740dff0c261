# backend/modules/incentives/__init__.py

"""
Incentives Module - staff incentive and rewards calculation engine.

Provides:
- Effective-dated rule versions for ten incentive kinds
- Daily, monthly slab and quarterly calculations
- Probabilistic spin-wheel rewards with per-user caps
- Idempotent payout ledger with audit trail
- Live leaderboards
"""

__version__ = "1.0.0"
