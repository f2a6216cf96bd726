"""
Storage layer for Token Ledger.

Record types and the SQLite repository that supplies them to the core.
"""
