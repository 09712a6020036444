"""
AmpTrack document kernel.

Lifecycle engine for contractor commercial documents (estimates, invoices,
change orders):
- Decimal line-item totals
- Gap-safe per-year document numbering
- Per-type status machines with date-stamping side effects
- Cached PDF artifacts with revision-based invalidation
- Idempotent payment reconciliation
- Estimate -> invoice / project conversion
"""

__version__ = "0.1.0"
