"""
billsplit - Source Package

A shared-bill ledger engine: who paid, who owes, and the fewest
payments that square everyone up.

DESIGN PRINCIPLES:
1. Balances are derived data - always reproducible from bills and splits
2. Every bill mutation carries its balance side effect
3. Incremental paths always have a full-recalculation fallback
4. A settlement plan is validated before it is accepted
5. Storage and identity lookup are swappable collaborators
"""

__version__ = "1.0.0"
__author__ = "billsplit Team"
