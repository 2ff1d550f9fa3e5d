"""Kernel services: flush-only writers plus the transactional ContractRegistry."""

from contract_kernel.services.contract_lifecycle import ContractLifecycleService
from contract_kernel.services.contract_registry import ContractRegistry
from contract_kernel.services.history_recorder import HistoryRecorder
from contract_kernel.services.liquidation_ledger import LiquidationLedger
from contract_kernel.services.sequence_service import SequenceService, YearlySequenceCounter

__all__ = [
    "ContractLifecycleService",
    "ContractRegistry",
    "HistoryRecorder",
    "LiquidationLedger",
    "SequenceService",
    "YearlySequenceCounter",
]
