"""
Configuration Loader (``contract_config.loader``).

Responsibility
--------------
Loads the YAML fragments of a configuration set and parses them into typed
``contract_config.schema`` dataclass instances.  The single public entry
point for runtime config is ``contract_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Ward names and ward codes are unique; branch and fallback codes do not
  collide with a ward code.
* Both the ``contract`` and ``liquidation`` series are declared, with
  distinct tags.
* ``compute_checksum`` produces a deterministic SHA-256 hash.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown timezone  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from contract_config.schema import DatabaseConfig, RegistryConfig, SeriesDef, WardDef

REQUIRED_SERIES = ("contract", "liquidation")

# Overrides database.url when set
DATABASE_URL_ENV = "LAND_CONTRACTS_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def load_config_set(set_dir: Path) -> dict[str, Any]:
    """
    Merge root.yaml with every other *.yaml in the set directory.

    Fragments are merged in file-name order; a key defined twice is an error.
    """
    root_file = set_dir / "root.yaml"
    merged = load_yaml_file(root_file)
    for fragment in sorted(set_dir.glob("*.yaml")):
        if fragment.name == "root.yaml":
            continue
        for key, value in load_yaml_file(fragment).items():
            if key in merged:
                raise ValueError(f"{fragment}: key {key!r} already defined")
            merged[key] = value
    return merged


def parse_wards(data: list[dict[str, Any]]) -> tuple[WardDef, ...]:
    wards = tuple(WardDef(name=str(w["name"]), code=str(w["code"])) for w in data)
    names = [w.name for w in wards]
    codes = [w.code for w in wards]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate ward names in configuration: {names}")
    if len(set(codes)) != len(codes):
        raise ValueError(f"Duplicate ward codes in configuration: {codes}")
    for w in wards:
        if not w.name.strip() or not w.code.strip():
            raise ValueError(f"Ward name and code must be non-empty: {w}")
    return wards


def parse_series(data: dict[str, Any]) -> tuple[SeriesDef, ...]:
    series = tuple(
        SeriesDef(name=str(name), tag=str(body["tag"]))
        for name, body in sorted(data.items())
    )
    declared = {s.name for s in series}
    missing = [name for name in REQUIRED_SERIES if name not in declared]
    if missing:
        raise ValueError(f"Missing series definitions: {missing}")
    tags = [s.tag for s in series]
    if len(set(tags)) != len(tags):
        raise ValueError(f"Series tags must be distinct: {tags}")
    return series


def parse_database(data: dict[str, Any] | None) -> DatabaseConfig:
    data = data or {}
    url = os.environ.get(DATABASE_URL_ENV) or data.get("url")
    if not url:
        raise ValueError(
            f"database.url is required (or set {DATABASE_URL_ENV})"
        )
    return DatabaseConfig(
        url=url,
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
    )


def parse_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc
    return name


def parse_registry_config(data: dict[str, Any]) -> RegistryConfig:
    """Parse a merged configuration dict into a RegistryConfig."""
    wards = parse_wards(data["wards"])
    branch_code = str(data["branch_code"])
    fallback_code = str(data["fallback_code"])

    ward_codes = {w.code for w in wards}
    for label, code in (("branch_code", branch_code), ("fallback_code", fallback_code)):
        if code in ward_codes:
            raise ValueError(f"{label} {code!r} collides with a ward code")

    # Database settings are excluded from the checksum
    source = {k: v for k, v in data.items() if k != "database"}

    return RegistryConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        wards=wards,
        branch_code=branch_code,
        fallback_code=fallback_code,
        series=parse_series(data["series"]),
        timezone=parse_timezone(str(data.get("timezone", "Asia/Ho_Chi_Minh"))),
        database=parse_database(data.get("database")),
        checksum=compute_checksum(source),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
