"""
Configuration loading for Token Ledger.
"""
