"""
Stock Ledger - Source Package

Inventory-linked expense ledger and daily balance reconciliation for a
small food-service business.

DESIGN PRINCIPLES:
1. Stock is always stored in the item's canonical unit
2. Every stock effect can be reversed exactly
3. Balances are recomputed from the records, never patched
4. Storage layer is swappable
5. Every step must be auditable
"""

__version__ = "1.0.0"
__author__ = "Stock Ledger Team"
