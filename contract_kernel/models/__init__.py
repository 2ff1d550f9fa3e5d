"""SQLAlchemy ORM models for the contract registry."""

from contract_kernel.models.contract import Contract
from contract_kernel.models.history import ContractHistory, HistoryAction
from contract_kernel.models.liquidation import LiquidationRecord

__all__ = [
    "Contract",
    "ContractHistory",
    "HistoryAction",
    "LiquidationRecord",
]
