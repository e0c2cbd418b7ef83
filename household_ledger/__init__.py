"""
Household Ledger - Source Package

A shared expense tracker for a two-person household.

DESIGN PRINCIPLES:
1. AI suggests → Human reviews → Ledger commits
2. Local state is primary, the cloud copy follows after a quiet period
3. Categories are referenced by id, never by name
4. Network failures become notices, never crashes
5. Storage and identity backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
