"""
Wallet Ledger - Source Package

Tracks money across two parallel views of the same funds:
Physical wallets (real accounts) and Logical wallets (budget buckets).

DESIGN PRINCIPLES:
1. Sum of Physical balances == Sum of Logical balances
2. Fail early, fail visibly
3. No silent corrections (discrepancies are reported, never repaired)
4. Every balance mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Wallet Ledger Team"
