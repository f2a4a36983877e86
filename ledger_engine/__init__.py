"""
Ledger Engine - Source Package

Running-balance ledger for a small bookkeeping system: customers,
credit/debit entries, and financial-year reports.

PRINCIPLES:
1. Running balances are derived, never supplied by callers
2. Every mutation recomputes the affected suffix atomically
3. Mutations for one customer are serialized
4. No silent corrections
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Engine Team"
