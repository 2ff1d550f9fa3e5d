"""
Identifiers -- location codes and human-readable number formatting.

Responsibility:
    Renders contract and liquidation numbers such as ``01/25.HĐ.LK`` from an
    allocated sequence value, the allocation year, the series tag and a
    location code; resolves the location code from a ward name and the
    branch flag.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Sequence values come
    from SequenceService; this module never touches storage.

Invariants enforced:
    - Branch contracts always use the branch code, whatever ward is given.
    - The two-digit year and the zero-padded sequence make the rendered
      number unique for a unique (series, year, sequence) triple.
    - Sequence values start at 1; zero and negatives are rejected.

Failure modes:
    - ValueError from format_identifier for sequence < 1 or a year < 0.
    - ZoneInfoNotFoundError from NumberingPolicy for an unknown timezone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping
from zoneinfo import ZoneInfo


class IdentifierSeries(str, Enum):
    """
    Independent numbering series.

    The value is the counter's ``series_name``; ``default_tag`` is the
    marker rendered into the number unless a NumberingPolicy overrides it.
    """

    CONTRACT = "contract"
    LIQUIDATION = "liquidation"

    @property
    def default_tag(self) -> str:
        return DEFAULT_SERIES_TAGS[self]


DEFAULT_SERIES_TAGS: dict[IdentifierSeries, str] = {
    IdentifierSeries.CONTRACT: "HĐ",
    IdentifierSeries.LIQUIDATION: "TL",
}

DEFAULT_WARD_CODES: Mapping[str, str] = MappingProxyType({
    "Phường Bình Lộc": "BL",
    "Phường Long Khánh": "LK",
    "Phường Bảo Vinh": "BV",
    "Phường Xuân Lập": "XL",
    "Phường Hàng Gòn": "HG",
})

DEFAULT_BRANCH_CODE = "CNLK"
DEFAULT_FALLBACK_CODE = "XX"


def format_identifier(series_tag: str, sequence: int, year: int, code: str) -> str:
    """
    Render ``"{sequence:02d}/{yy}.{tag}.{code}"``.

    Sequences above 99 simply widen (``100/25.HĐ.LK``).

    Examples:
        >>> format_identifier("HĐ", 1, 2025, "LK")
        '01/25.HĐ.LK'
        >>> format_identifier("TL", 5, 2025, "BV")
        '05/25.TL.BV'
    """
    if sequence < 1:
        raise ValueError(f"Sequence must be >= 1, got {sequence}")
    if year < 0:
        raise ValueError(f"Year must be non-negative, got {year}")
    return f"{sequence:02d}/{year % 100:02d}.{series_tag}.{code}"


@dataclass(frozen=True)
class LocationCodeResolver:
    """
    Maps (ward, is_branch) to the short location code used in numbers.

    Matching is exact on the ward name; unknown wards get the fallback code.
    """

    ward_codes: Mapping[str, str] = field(default_factory=lambda: DEFAULT_WARD_CODES)
    branch_code: str = DEFAULT_BRANCH_CODE
    fallback_code: str = DEFAULT_FALLBACK_CODE

    def resolve_code(self, ward: str, is_branch: bool) -> str:
        if is_branch:
            return self.branch_code
        return self.ward_codes.get(ward, self.fallback_code)


DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"


@dataclass(frozen=True)
class NumberingPolicy:
    """
    Everything needed to turn an allocated sequence value into a number.

    The allocation year is the calendar year of the operation's timestamp
    in ``timezone``, so a contract created at 23:30 UTC on 31 December is
    numbered in the next year when the office is at UTC+7.
    """

    resolver: LocationCodeResolver = field(default_factory=LocationCodeResolver)
    contract_tag: str = DEFAULT_SERIES_TAGS[IdentifierSeries.CONTRACT]
    liquidation_tag: str = DEFAULT_SERIES_TAGS[IdentifierSeries.LIQUIDATION]
    timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self) -> None:
        # Fail at construction on unknown zone names
        ZoneInfo(self.timezone)

    def tag_for(self, series: IdentifierSeries) -> str:
        if series is IdentifierSeries.CONTRACT:
            return self.contract_tag
        return self.liquidation_tag

    def allocation_year(self, at: datetime) -> int:
        return at.astimezone(ZoneInfo(self.timezone)).year

    def render(
        self,
        series: IdentifierSeries,
        sequence: int,
        year: int,
        ward: str,
        is_branch: bool,
    ) -> str:
        code = self.resolver.resolve_code(ward, is_branch)
        return format_identifier(self.tag_for(series), sequence, year, code)
