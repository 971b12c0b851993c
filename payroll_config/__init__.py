"""
payroll_config -- jurisdiction packs for the payroll tax engine.

Responsibility:
    Loads human-authored YAML jurisdiction packs (tax schedules,
    allowances, default pay components, engine settings), validates them,
    and hands out the active pack for a jurisdiction and date.

Architecture position:
    Configuration -- sits above ``payroll_kernel`` and ``payroll_engines``
    and below ``payroll_services`` / ``payroll_batch``.  The kernel and
    engines MUST NEVER import from ``payroll_config``; ``bridges`` turns
    packs into engine domain types.

Invariants enforced:
    - A pack must pass ``validate_pack`` before it is returned.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no pack for the jurisdiction and date.
    - ``ValueError`` -- schema or structural validation failures.

Audit relevance:
    Every successful ``get_active_pack()`` call emits a
    ``PAYROLL_CONFIG_TRACE`` log entry with the pack id, version and
    checksum, tying calculations to the exact configuration used.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

from payroll_config.loader import compute_checksum, load_pack, load_packs
from payroll_config.schema import EngineSettings, JurisdictionPack
from payroll_config.validator import PackValidationResult, validate_pack
from payroll_kernel.domain.effective import is_effective
from payroll_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default pack directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_pack(
    jurisdiction: str,
    as_of_date: date,
    config_dir: Path | None = None,
) -> JurisdictionPack:
    """
    The validated pack for ``jurisdiction`` in effect on ``as_of_date``.

    Raises:
        FileNotFoundError: No pack covers the jurisdiction and date.
        ValueError: The matching pack fails validation, or more than one
            pack matches.
    """
    packs = load_packs(config_dir or _DEFAULT_CONFIG_DIR)
    matches = [
        p for p in packs
        if p.jurisdiction == jurisdiction
        and is_effective(p.effective_from, p.effective_to, as_of_date)
    ]
    if not matches:
        raise FileNotFoundError(
            f"No payroll pack for jurisdiction {jurisdiction!r} effective on {as_of_date}"
        )
    if len(matches) > 1:
        raise ValueError(
            f"Ambiguous payroll packs for {jurisdiction!r} on {as_of_date}: "
            + ", ".join(p.pack_id for p in matches)
        )

    pack = matches[0]
    validation = validate_pack(pack)
    if not validation.is_valid:
        raise ValueError(
            "Pack validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    _logger.info(
        "PAYROLL_CONFIG_TRACE",
        extra={
            "trace_type": "PAYROLL_CONFIG_TRACE",
            "pack_id": pack.pack_id,
            "jurisdiction": pack.jurisdiction,
            "version": pack.version,
            "checksum": pack.checksum,
            "rule_set_count": len(pack.rule_sets),
            "allowance_count": len(pack.allowances),
            "component_count": len(pack.pay_components),
        },
    )
    return pack


__all__ = [
    "EngineSettings",
    "JurisdictionPack",
    "PackValidationResult",
    "compute_checksum",
    "get_active_pack",
    "load_pack",
    "load_packs",
    "validate_pack",
]
