"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Historical paychecks must stay reproducible and auditable.  Rule versions
that employees were paid against are never edited (a new effective-dated
version is appended instead), and a finalized paycheck is never edited in
place (it is voided and a correction is created).

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Permitted change after insert
-----------------------|-------------------------------------------------------
TaxRuleSetModel        | effective_to NULL -> date, once (supersession close)
AllowanceModel         | effective_to NULL -> date, once (supersession close)
TaxBracketModel        | none
PaycheckModel          | status finalized -> voided (+ voided_at, voided_by_id,
                       | void_reason)
PaycheckComponentModel | none
TaxProfileChangeModel  | none
AuditEvent             | none

updated_at / updated_by_id are audit metadata and may always change.
No DELETE is permitted on any protected entity.

===============================================================================
USAGE
===============================================================================

    from payroll_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect

from payroll_kernel.exceptions import ImmutabilityViolationError
from payroll_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_columns(target) -> dict[str, tuple[list, list]]:
    """Map of column attribute -> (old values, new values) pending flush."""
    insp = inspect(target)
    changed: dict[str, tuple[list, list]] = {}
    for column_attr in insp.mapper.column_attrs:
        key = column_attr.key
        if key in _AUDIT_METADATA_FIELDS:
            continue
        hist = insp.attrs[key].history
        if hist.has_changes():
            changed[key] = (list(hist.deleted), list(hist.added))
    return changed


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_effective_dated_update(entity_type: str, target) -> None:
    """Published versions only allow closing an open-ended window once."""
    for key, (old, new) in _changed_columns(target).items():
        if key == "effective_to":
            was_open = not old or old[0] is None
            closes = bool(new) and new[0] is not None
            if was_open and closes and new[0] > target.effective_from:
                continue
            _block(
                entity_type, target, "UPDATE",
                "effective_to may only be set once, on an open-ended version, "
                "to a date after effective_from",
                field=key,
            )
        _block(
            entity_type, target, "UPDATE",
            f"Cannot modify field '{key}' on a published version; "
            f"publish a new effective-dated version instead",
            field=key,
        )


def _check_rule_set_update(mapper, connection, target):
    _check_effective_dated_update("TaxRuleSet", target)


def _check_allowance_update(mapper, connection, target):
    _check_effective_dated_update("Allowance", target)


_VOID_FIELDS = frozenset({"status", "voided_at", "voided_by_id", "void_reason"})


def _check_paycheck_update(mapper, connection, target):
    """
    Finalized paychecks accept exactly one transition: finalized -> voided.

    Logic:
        1. Any field outside the void fields changing: block.
        2. Void fields changing without status moving finalized -> voided: block.
    """
    from payroll_kernel.models.paycheck import PaycheckStatus

    changed = _changed_columns(target)
    if not changed:
        return

    for key in changed:
        if key not in _VOID_FIELDS:
            _block(
                "Paycheck", target, "UPDATE",
                f"Cannot modify field '{key}' on a finalized paycheck; "
                f"void it and create a correction",
                field=key,
            )

    status_change = changed.get("status")
    is_void_transition = (
        status_change is not None
        and status_change[0]
        and status_change[0][0] == PaycheckStatus.FINALIZED.value
        and status_change[1]
        and status_change[1][0] == PaycheckStatus.VOIDED.value
    )
    if not is_void_transition:
        _block(
            "Paycheck", target, "UPDATE",
            "Only the finalized -> voided transition is permitted",
            field="status",
        )


def _always_immutable(entity_type: str):
    def _check_update(mapper, connection, target):
        if _changed_columns(target):
            _block(entity_type, target, "UPDATE", f"{entity_type} records are immutable")

    def _check_delete(mapper, connection, target):
        _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    _check_update.__name__ = f"_check_{entity_type.lower()}_update"
    _check_delete.__name__ = f"_check_{entity_type.lower()}_delete"
    return _check_update, _check_delete


_check_bracket_update, _check_bracket_delete = _always_immutable("TaxBracket")
_check_component_update, _check_component_delete = _always_immutable("PaycheckComponent")
_check_profile_change_update, _check_profile_change_delete = _always_immutable("TaxProfileChange")
_check_audit_event_update, _check_audit_event_delete = _always_immutable("AuditEvent")


def _no_delete(entity_type: str):
    def _check_delete(mapper, connection, target):
        _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    _check_delete.__name__ = f"_check_{entity_type.lower()}_delete"
    return _check_delete


_check_rule_set_delete = _no_delete("TaxRuleSet")
_check_allowance_delete = _no_delete("Allowance")
_check_paycheck_delete = _no_delete("Paycheck")


def _listeners():
    from payroll_kernel.models.audit_event import AuditEvent
    from payroll_kernel.models.paycheck import PaycheckComponentModel, PaycheckModel
    from payroll_kernel.models.rule_set import AllowanceModel, TaxBracketModel, TaxRuleSetModel
    from payroll_kernel.models.tax_profile import TaxProfileChangeModel

    return [
        (TaxRuleSetModel, "before_update", _check_rule_set_update),
        (TaxRuleSetModel, "before_delete", _check_rule_set_delete),
        (AllowanceModel, "before_update", _check_allowance_update),
        (AllowanceModel, "before_delete", _check_allowance_delete),
        (TaxBracketModel, "before_update", _check_bracket_update),
        (TaxBracketModel, "before_delete", _check_bracket_delete),
        (PaycheckModel, "before_update", _check_paycheck_update),
        (PaycheckModel, "before_delete", _check_paycheck_delete),
        (PaycheckComponentModel, "before_update", _check_component_update),
        (PaycheckComponentModel, "before_delete", _check_component_delete),
        (TaxProfileChangeModel, "before_update", _check_profile_change_update),
        (TaxProfileChangeModel, "before_delete", _check_profile_change_delete),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
