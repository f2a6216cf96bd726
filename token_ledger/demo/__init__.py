"""
Demo data for trying out Token Ledger.
"""
