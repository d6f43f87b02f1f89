"""
Bank Nifty Tracker
Live quotes, multipliers and index divergence history for the Bank Nifty basket.
"""

__version__ = "1.0.0"
__description__ = "Bank Nifty quote aggregation with durable multiplier storage"
