"""
Contract Kernel - land-use contract registry

A transactional, append-only contract registry with:
- Per-year sequential contract and liquidation numbers
- Guarded lifecycle transitions (create, liquidate, cancel, edit)
- Never-reused identifiers, even for cancelled liquidations
- Full audit history of every transition
"""

__version__ = "0.1.0"
