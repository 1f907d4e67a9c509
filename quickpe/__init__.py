"""
QuickPe Wallet

A digital-wallet backend with atomic peer-to-peer transfers, money requests,
notifications, a hash-chained audit trail and per-user analytics.
"""

__version__ = "1.0.0"
