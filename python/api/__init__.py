"""
REST API for the Officer Credit Ledger
"""
