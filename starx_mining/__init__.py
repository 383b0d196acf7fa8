"""
StarX Mining Credit Service

A small backend service that keeps StarX mining balances up to date:
- Time-boxed mining sessions credited per minute
- Referral speed boost for users with active referrals
- Batch crediting job with a REST trigger and a periodic scheduler
"""

__version__ = "0.1.0"
__author__ = "StarX Network Team"
