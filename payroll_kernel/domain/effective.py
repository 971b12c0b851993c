"""
Effective-dated windows.

Every rule set and allowance is valid within a half-open window
``[effective_from, effective_to)``; ``effective_to=None`` is open-ended.
"""

from datetime import date


def is_effective(
    effective_from: date,
    effective_to: date | None,
    as_of: date,
) -> bool:
    """True when ``as_of`` falls inside ``[effective_from, effective_to)``."""
    if as_of < effective_from:
        return False
    return effective_to is None or as_of < effective_to


def windows_overlap(
    a_from: date,
    a_to: date | None,
    b_from: date,
    b_to: date | None,
) -> bool:
    """True when two half-open windows share at least one day."""
    a_before_b_ends = b_to is None or a_from < b_to
    b_before_a_ends = a_to is None or b_from < a_to
    return a_before_b_ends and b_before_a_ends
