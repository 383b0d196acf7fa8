"""
Mining credit service: accrual, referral boost, batch job, stores and clocks.
"""
