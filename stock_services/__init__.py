"""Orchestration services for the production stock ledger."""

from stock_services.production_ledger import ProductionLedgerService, StageChangeOutcome

__all__ = [
    "ProductionLedgerService",
    "StageChangeOutcome",
]
