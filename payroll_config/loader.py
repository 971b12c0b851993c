"""
Configuration Loader (``payroll_config.loader``).

Responsibility
--------------
Loads jurisdiction pack YAML files and parses them into typed
``payroll_config.schema`` dataclass instances.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Consumed by
``payroll_config.get_active_pack`` and by
``RuleCatalogService.import_pack``.  It has no dependency on the kernel
ORM or on services.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Money and rates are parsed to ``Decimal`` through ``str`` so YAML floats
  never leak binary rounding into a schedule.
* ``compute_checksum`` produces a deterministic SHA-256 hash for pack
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid date or number  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from payroll_config.schema import (
    AllowanceDef,
    BracketDef,
    ComponentTierDef,
    EngineSettings,
    JurisdictionPack,
    PayComponentDef,
    RuleSetDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_optional_date(value: Any) -> date | None:
    return parse_date(value) if value else None


def parse_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Parse a Decimal via its string form; bools and blanks are rejected."""
    if isinstance(value, bool) or value is None or value == "":
        raise ValueError(f"{field_name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name}: cannot parse {value!r} as a decimal") from None


def parse_optional_decimal(value: Any, field_name: str = "value") -> Decimal | None:
    return None if value is None else parse_decimal(value, field_name)


def parse_bracket(data: dict[str, Any]) -> BracketDef:
    """
    Parse a ``BracketDef``.

    ``max`` may be omitted or null for the open-ended top bracket.
    ``fixed_amount`` may be omitted; it is then derived from the table.
    """
    return BracketDef(
        order=int(data["order"]),
        income_min=parse_decimal(data["min"], "min"),
        income_max=parse_optional_decimal(data.get("max"), "max"),
        rate_percentage=parse_decimal(data["rate"], "rate"),
        fixed_amount=parse_optional_decimal(data.get("fixed_amount"), "fixed_amount"),
    )


def parse_rule_set(data: dict[str, Any]) -> RuleSetDef:
    """
    Parse a ``RuleSetDef``.

    Raises:
        KeyError: ``tax_type``, ``calculation_method``, ``effective_from``
            or ``brackets`` missing.
    """
    return RuleSetDef(
        tax_type=data["tax_type"],
        calculation_method=data["calculation_method"],
        effective_from=parse_date(data["effective_from"]),
        effective_to=parse_optional_date(data.get("effective_to")),
        brackets=tuple(parse_bracket(b) for b in data["brackets"]),
        name=data.get("name", ""),
        bracket_period=data.get("bracket_period", "yearly"),
        annual_cap=parse_optional_decimal(data.get("annual_cap"), "annual_cap"),
        version=int(data.get("version", 1)),
    )


def parse_allowance(data: dict[str, Any]) -> AllowanceDef:
    return AllowanceDef(
        allowance_type=data["allowance_type"],
        amount=parse_decimal(data["amount"], "amount"),
        effective_from=parse_date(data["effective_from"]),
        effective_to=parse_optional_date(data.get("effective_to")),
        is_percentage=bool(data.get("is_percentage", False)),
        name=data.get("name", ""),
        version=int(data.get("version", 1)),
    )


def parse_pay_component(data: dict[str, Any]) -> PayComponentDef:
    """Parse a ``PayComponentDef``."""
    tiers = tuple(
        ComponentTierDef(
            lower=parse_decimal(t["lower"], "lower"),
            upper=parse_optional_decimal(t.get("upper"), "upper"),
            rate_percentage=parse_decimal(t["rate"], "rate"),
        )
        for t in data.get("tiers", ())
    )
    return PayComponentDef(
        code=data["code"],
        category=data["category"],
        calculation_type=data["calculation_type"],
        sequence_order=int(data.get("sequence_order", 0)),
        depends_on=tuple(data.get("depends_on", ())),
        is_taxable=bool(data.get("is_taxable", True)),
        affects_gross_pay=bool(data.get("affects_gross_pay", True)),
        affects_net_pay=bool(data.get("affects_net_pay", True)),
        name=data.get("name", ""),
        is_pre_tax=bool(data.get("is_pre_tax", False)),
        income_kind=data.get("income_kind", "regular"),
        tax_kind=data.get("tax_kind"),
        amount=parse_optional_decimal(data.get("amount"), "amount"),
        rate=parse_optional_decimal(data.get("rate"), "rate"),
        percentage=parse_optional_decimal(data.get("percentage"), "percentage"),
        formula=data.get("formula"),
        tiers=tiers,
        allowance_type=data.get("allowance_type"),
    )


def parse_engine_settings(data: dict[str, Any], currency: str) -> EngineSettings:
    max_workers = int(data.get("max_workers", 4))
    if max_workers < 1:
        raise ValueError(f"engine.max_workers must be >= 1, got {max_workers}")
    return EngineSettings(currency=currency, max_workers=max_workers)


def parse_pack(data: dict[str, Any], checksum: str = "") -> JurisdictionPack:
    """
    Parse a ``JurisdictionPack`` from a loaded YAML document.

    Raises:
        KeyError: ``pack_id``, ``jurisdiction``, ``currency`` or
            ``effective_from`` missing.
    """
    return JurisdictionPack(
        pack_id=data["pack_id"],
        jurisdiction=data["jurisdiction"],
        version=int(data.get("version", 1)),
        effective_from=parse_date(data["effective_from"]),
        effective_to=parse_optional_date(data.get("effective_to")),
        engine=parse_engine_settings(data.get("engine") or {}, data["currency"]),
        rule_sets=tuple(parse_rule_set(r) for r in data.get("rule_sets", ())),
        allowances=tuple(parse_allowance(a) for a in data.get("allowances", ())),
        pay_components=tuple(parse_pay_component(c) for c in data.get("pay_components", ())),
        description=data.get("description", ""),
        checksum=checksum or compute_checksum(data),
    )


def load_pack(path: Path) -> JurisdictionPack:
    """Load and parse one pack file."""
    data = load_yaml_file(Path(path))
    return parse_pack(data)


def load_packs(directory: Path) -> tuple[JurisdictionPack, ...]:
    """
    Load every ``*.yaml`` pack in ``directory``.

    Returns packs ordered by ``(jurisdiction, effective_from, version)``.

    Raises:
        FileNotFoundError: ``directory`` does not exist.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Pack directory not found: {directory}")
    packs = [load_pack(p) for p in sorted(directory.glob("*.yaml"))]
    return tuple(sorted(packs, key=lambda p: (p.jurisdiction, p.effective_from, p.version)))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
