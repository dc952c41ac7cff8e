"""Referral, fraud scoring and reward claim ledger."""

__version__ = "0.1.0"
