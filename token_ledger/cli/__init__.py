"""
Command-line interface for Token Ledger.
"""
