"""
Typed Exception Hierarchy for the Payroll Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PayrollEngineError:

    PayrollEngineError (base)
    |
    +-- ConfigurationError            fatal for the affected paycheck
    |   +-- NoApplicableRuleSetError
    |   +-- AmbiguousRuleSetError
    |   +-- NoApplicableAllowanceError
    |   +-- AmbiguousAllowanceError
    |   +-- BracketTableError
    |   +-- ComponentDependencyCycleError
    |   +-- UnknownComponentDependencyError
    |   +-- InvalidComponentConfigurationError
    |   +-- RuleVersionNotFoundError
    |   +-- InvalidRuleVersionError
    |
    +-- CalculationInputError         rejected before any calculation
    |   +-- InvalidWagePeriodError
    |   +-- InvalidBonusConfigurationError
    |   +-- InvalidPaycheckInputError
    |   +-- TaxProfileNotFoundError
    |
    +-- PaycheckError
    |   +-- PaycheckAlreadyFinalizedError
    |   +-- PaycheckNotFoundError
    |   +-- PaycheckNotFinalizedError
    |
    +-- TaxProfileError
    |   +-- RetroactiveProfileChangeError
    |
    +-- ImmutabilityViolationError
    +-- AuditChainBrokenError
    |
    +-- PayrollRunError
        +-- PayrollRunIdempotencyError
        +-- PayrollRunNotFoundError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. A payroll run catches PayrollEngineError per employee and records
   ``e.code`` on the employee outcome. The run continues.

2. USE STRUCTURED DATA (not message parsing):

    except NoApplicableRuleSetError as e:
        return {
            "error": e.code,
            "jurisdiction": e.jurisdiction,
            "tax_type": e.tax_type,
            "as_of": e.as_of,
        }

3. Data-sufficiency fallbacks (short bonus history) are NOT exceptions.
   They are logged and recorded in the calculation result notes.

===============================================================================
"""

from datetime import date


class PayrollEngineError(Exception):
    """
    Base exception for all payroll engine errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "PAYROLL_ENGINE_ERROR"


# Configuration errors


class ConfigurationError(PayrollEngineError):
    """Base exception for rule and component configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class NoApplicableRuleSetError(ConfigurationError):
    """No rule set covers the jurisdiction, tax type and date."""

    code: str = "NO_APPLICABLE_RULE_SET"

    def __init__(self, jurisdiction: str, tax_type: str, as_of: date):
        self.jurisdiction = jurisdiction
        self.tax_type = str(tax_type)
        self.as_of = as_of
        super().__init__(
            f"No {self.tax_type} rule set for {jurisdiction} effective on {as_of}"
        )


class AmbiguousRuleSetError(ConfigurationError):
    """More than one rule set covers the jurisdiction, tax type and date."""

    code: str = "AMBIGUOUS_RULE_SET"

    def __init__(
        self,
        jurisdiction: str,
        tax_type: str,
        as_of: date,
        rule_set_ids: list[str],
    ):
        self.jurisdiction = jurisdiction
        self.tax_type = str(tax_type)
        self.as_of = as_of
        self.rule_set_ids = rule_set_ids
        super().__init__(
            f"{len(rule_set_ids)} overlapping {self.tax_type} rule sets for "
            f"{jurisdiction} on {as_of}: {', '.join(rule_set_ids)}"
        )


class NoApplicableAllowanceError(ConfigurationError):
    """No allowance covers the jurisdiction, type and date."""

    code: str = "NO_APPLICABLE_ALLOWANCE"

    def __init__(self, jurisdiction: str, allowance_type: str, as_of: date):
        self.jurisdiction = jurisdiction
        self.allowance_type = str(allowance_type)
        self.as_of = as_of
        super().__init__(
            f"No {self.allowance_type} allowance for {jurisdiction} "
            f"effective on {as_of}"
        )


class AmbiguousAllowanceError(ConfigurationError):
    """More than one allowance covers the jurisdiction, type and date."""

    code: str = "AMBIGUOUS_ALLOWANCE"

    def __init__(
        self,
        jurisdiction: str,
        allowance_type: str,
        as_of: date,
        allowance_ids: list[str],
    ):
        self.jurisdiction = jurisdiction
        self.allowance_type = str(allowance_type)
        self.as_of = as_of
        self.allowance_ids = allowance_ids
        super().__init__(
            f"{len(allowance_ids)} overlapping {self.allowance_type} allowances "
            f"for {jurisdiction} on {as_of}: {', '.join(allowance_ids)}"
        )


class BracketTableError(ConfigurationError):
    """Bracket table has a gap, an overlap, or an invalid bound."""

    code: str = "BRACKET_TABLE_INVALID"

    def __init__(self, rule_set_id: str, reason: str):
        self.rule_set_id = rule_set_id
        self.reason = reason
        super().__init__(f"Invalid bracket table for {rule_set_id}: {reason}")


class ComponentDependencyCycleError(ConfigurationError):
    """Pay components declare a circular dependency."""

    code: str = "COMPONENT_DEPENDENCY_CYCLE"

    def __init__(self, component_codes: list[str]):
        self.component_codes = component_codes
        super().__init__(
            f"Pay component dependency cycle among: {', '.join(component_codes)}"
        )


class UnknownComponentDependencyError(ConfigurationError):
    """A pay component depends on a component that is not configured."""

    code: str = "UNKNOWN_COMPONENT_DEPENDENCY"

    def __init__(self, component_code: str, missing_code: str):
        self.component_code = component_code
        self.missing_code = missing_code
        super().__init__(
            f"Pay component {component_code} depends on unknown component "
            f"{missing_code}"
        )


class InvalidComponentConfigurationError(ConfigurationError):
    """A pay component is missing a setting its calculation type needs."""

    code: str = "INVALID_COMPONENT_CONFIGURATION"

    def __init__(self, component_code: str, reason: str):
        self.component_code = component_code
        self.reason = reason
        super().__init__(f"Pay component {component_code}: {reason}")


class RuleVersionNotFoundError(ConfigurationError):
    """A published rule set or allowance version does not exist."""

    code: str = "RULE_VERSION_NOT_FOUND"

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = str(record_id)
        super().__init__(f"{record_type} not found: {record_id}")


class InvalidRuleVersionError(ConfigurationError):
    """A rule set or allowance version cannot be published or superseded."""

    code: str = "INVALID_RULE_VERSION"

    def __init__(self, record_type: str, reason: str):
        self.record_type = record_type
        self.reason = reason
        super().__init__(f"{record_type}: {reason}")


# Input errors


class CalculationInputError(PayrollEngineError):
    """Base exception for inputs rejected before calculation begins."""

    code: str = "CALCULATION_INPUT_ERROR"


class InvalidWagePeriodError(CalculationInputError):
    """Wage period type or coverage is malformed."""

    code: str = "INVALID_WAGE_PERIOD"

    def __init__(self, value: object, reason: str):
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid wage period {value!r}: {reason}")


class InvalidBonusConfigurationError(CalculationInputError):
    """Bonus context cannot be smoothed as supplied."""

    code: str = "INVALID_BONUS_CONFIGURATION"

    def __init__(self, reason: str, loontijdvakken_covered: int | None = None):
        self.reason = reason
        self.loontijdvakken_covered = loontijdvakken_covered
        super().__init__(f"Invalid bonus configuration: {reason}")


class InvalidPaycheckInputError(CalculationInputError):
    """Paycheck request fails validation."""

    code: str = "INVALID_PAYCHECK_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid paycheck input {field}: {reason}")


class TaxProfileNotFoundError(CalculationInputError):
    """Employee has no tax profile."""

    code: str = "TAX_PROFILE_NOT_FOUND"

    def __init__(self, employee_id: str):
        self.employee_id = str(employee_id)
        super().__init__(f"No tax profile for employee {employee_id}")


# Paycheck lifecycle errors


class PaycheckError(PayrollEngineError):
    """Base exception for paycheck persistence errors."""

    code: str = "PAYCHECK_ERROR"


class PaycheckAlreadyFinalizedError(PaycheckError):
    """A finalized paycheck already exists for the employee and pay period."""

    code: str = "PAYCHECK_ALREADY_FINALIZED"

    def __init__(
        self,
        employee_id: str,
        pay_period_start: date,
        pay_period_end: date,
        paycheck_id: str,
    ):
        self.employee_id = str(employee_id)
        self.pay_period_start = pay_period_start
        self.pay_period_end = pay_period_end
        self.paycheck_id = str(paycheck_id)
        super().__init__(
            f"Paycheck {paycheck_id} for employee {employee_id} "
            f"({pay_period_start} to {pay_period_end}) is already finalized; "
            f"void it and submit a correction instead"
        )


class PaycheckNotFoundError(PaycheckError):
    """Paycheck with given ID was not found."""

    code: str = "PAYCHECK_NOT_FOUND"

    def __init__(self, paycheck_id: str):
        self.paycheck_id = str(paycheck_id)
        super().__init__(f"Paycheck not found: {paycheck_id}")


class PaycheckNotFinalizedError(PaycheckError):
    """Only finalized paychecks can be voided."""

    code: str = "PAYCHECK_NOT_FINALIZED"

    def __init__(self, paycheck_id: str, status: str):
        self.paycheck_id = str(paycheck_id)
        self.status = status
        super().__init__(f"Paycheck {paycheck_id} is {status}, not finalized")


# Tax profile errors


class TaxProfileError(PayrollEngineError):
    """Base exception for tax profile mutation errors."""

    code: str = "TAX_PROFILE_ERROR"


class RetroactiveProfileChangeError(TaxProfileError):
    """Profile change would alter an already-finalized paycheck."""

    code: str = "RETROACTIVE_PROFILE_CHANGE"

    def __init__(
        self,
        employee_id: str,
        field: str,
        effective_date: date,
        last_finalized_pay_date: date,
    ):
        self.employee_id = str(employee_id)
        self.field = field
        self.effective_date = effective_date
        self.last_finalized_pay_date = last_finalized_pay_date
        super().__init__(
            f"Cannot change {field} for employee {employee_id} effective "
            f"{effective_date}: paycheck already finalized for pay date "
            f"{last_finalized_pay_date}"
        )


# Integrity errors


class ImmutabilityViolationError(PayrollEngineError):
    """
    Attempted to modify or delete an immutable record.

    Published rule sets, brackets, allowances, finalized paychecks, their
    component rows, profile change rows and audit events are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(PayrollEngineError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Payroll run errors


class PayrollRunError(PayrollEngineError):
    """Base exception for payroll run errors."""

    code: str = "PAYROLL_RUN_ERROR"


class PayrollRunIdempotencyError(PayrollRunError):
    """A run with the same idempotency key already exists."""

    code: str = "PAYROLL_RUN_DUPLICATE"

    def __init__(self, idempotency_key: str, existing_run_id: str):
        self.idempotency_key = idempotency_key
        self.existing_run_id = str(existing_run_id)
        super().__init__(
            f"Payroll run already exists for key {idempotency_key}: "
            f"{existing_run_id}"
        )


class PayrollRunNotFoundError(PayrollRunError):
    """Payroll run with given ID was not found."""

    code: str = "PAYROLL_RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = str(run_id)
        super().__init__(f"Payroll run not found: {run_id}")
