"""
Stock Kernel - production inventory ledger

Material balances driven by an append-only movement log with:
- Bill-of-materials resolution with size-specific / generic fallback
- Atomic, idempotent stock transactions that never drive a balance negative
- Full auditability via per-line movement records
- Stage history tracking for production jobs
"""

__version__ = "0.1.0"
