"""
Expense Tracker - Source Package

A personal expense tracker: owners record expenses, edit them with a
full audit trail, set a monthly budget and get chart-ready analytics.

DESIGN PRINCIPLES:
1. Every edit is auditable (append-only history per expense)
2. Ownership is checked at the API layer AND at the point of mutation
3. Fail early, fail visibly
4. No silent corrections
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Tracker Team"
