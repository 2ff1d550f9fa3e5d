"""
Bridges from RegistryConfig to kernel inputs.

The kernel never imports contract_config; these functions translate the
parsed configuration into the plain kernel types it accepts.
"""

from __future__ import annotations

from types import MappingProxyType

from contract_config.schema import RegistryConfig
from contract_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from contract_kernel.db.immutability import register_immutability_listeners
from contract_kernel.domain.clock import Clock
from contract_kernel.domain.identifiers import LocationCodeResolver, NumberingPolicy
from contract_kernel.services.contract_registry import ContractRegistry


def build_location_resolver(config: RegistryConfig) -> LocationCodeResolver:
    return LocationCodeResolver(
        ward_codes=MappingProxyType({w.name: w.code for w in config.wards}),
        branch_code=config.branch_code,
        fallback_code=config.fallback_code,
    )


def build_numbering_policy(config: RegistryConfig) -> NumberingPolicy:
    return NumberingPolicy(
        resolver=build_location_resolver(config),
        contract_tag=config.series_tag("contract"),
        liquidation_tag=config.series_tag("liquidation"),
        timezone=config.timezone,
    )


def build_registry(config: RegistryConfig, clock: Clock | None = None) -> ContractRegistry:
    """
    Initialize the engine from config.database and return a ready registry.

    Creates missing tables and installs the immutability listeners.
    """
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    create_tables()
    register_immutability_listeners()
    return ContractRegistry(
        get_session_factory(),
        clock=clock,
        policy=build_numbering_policy(config),
    )
