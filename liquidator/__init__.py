"""
Solana Auto-Liquidation Bot

Watches a transaction feed for large buys of one tracked token and answers
each with a scripted sell/buy sequence spread across a rotating wallet pool.
"""

__version__ = "1.0.0"
