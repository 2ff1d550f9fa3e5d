"""Read-only selectors returning DTOs."""

from contract_kernel.selectors.details_selector import DetailsSelector, merge_details_view
from contract_kernel.selectors.history_selector import HistorySelector

__all__ = [
    "DetailsSelector",
    "HistorySelector",
    "merge_details_view",
]
