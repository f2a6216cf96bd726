"""
Core modules for Token Ledger.

This package contains the allocation and ledger engine: fair-share costs,
running balances, consumption trends and historical receipt analysis.
"""
