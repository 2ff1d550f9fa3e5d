"""
contract_config: single public entrypoint for registry configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``contract_kernel``.  The kernel MUST NEVER
    import from ``contract_config``; ``contract_config.bridges`` translates
    the parsed config into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested set does not exist.
    - ``ValueError`` -- structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``CONTRACT_CONFIG_TRACE`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from contract_config.bridges import (
    build_location_resolver,
    build_numbering_policy,
    build_registry,
)
from contract_config.loader import load_config_set, parse_registry_config
from contract_config.schema import DatabaseConfig, RegistryConfig, SeriesDef, WardDef

_logger = logging.getLogger("contract_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_dir: Path | None = None,
    set_name: str = "default",
) -> RegistryConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to configuration sets directory.
            Defaults to contract_config/sets/.
        set_name: Subdirectory holding root.yaml and its fragments.

    Raises:
        FileNotFoundError: If the set directory or its root.yaml is missing.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir else _DEFAULT_CONFIG_DIR
    set_dir = sets_dir / set_name
    if not (set_dir / "root.yaml").is_file():
        raise FileNotFoundError(f"Configuration set not found: {set_dir}")

    config = parse_registry_config(load_config_set(set_dir))

    _logger.info(
        "CONTRACT_CONFIG_TRACE",
        extra={
            "trace_type": "CONTRACT_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "ward_count": len(config.wards),
            "timezone": config.timezone,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "build_location_resolver",
    "build_numbering_policy",
    "build_registry",
    "RegistryConfig",
    "WardDef",
    "SeriesDef",
    "DatabaseConfig",
]
