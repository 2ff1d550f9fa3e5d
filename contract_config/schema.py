"""
RegistryConfig schema.

Defines the human-authored, reviewable configuration of the registry:
the ward table used for location codes, the branch and fallback codes,
the series tags, the office timezone and the database connection.
YAML fragments are parsed into these types by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WardDef:
    """One selectable ward and its two-letter location code."""

    name: str
    code: str


@dataclass(frozen=True)
class SeriesDef:
    """A numbering series and the tag rendered into its numbers."""

    name: str  # "contract" or "liquidation"
    tag: str


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistryConfig:
    """
    Complete registry configuration.

    checksum is the SHA-256 of the canonical source dict, identical for
    identical YAML content.
    """

    config_id: str
    version: int
    wards: tuple[WardDef, ...]
    branch_code: str
    fallback_code: str
    series: tuple[SeriesDef, ...]
    timezone: str
    database: DatabaseConfig
    checksum: str = ""

    def series_tag(self, name: str) -> str:
        for s in self.series:
            if s.name == name:
                return s.tag
        raise KeyError(f"No series named {name!r}")

    @property
    def ward_names(self) -> tuple[str, ...]:
        return tuple(w.name for w in self.wards)
