"""
Token Ledger.

Fair-share accounting for a jointly funded electricity-token account.
"""

__version__ = "0.1.0"
