"""
Tests for the paycheck calculation entry point and its repositories.

Covers:
- Calculation through the in-memory and SQL repositories
- Year-to-date capped allowance usage (finalized, same year, earlier pay date)
- calculate_and_finalize persistence
- Failures logged with their error code
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_engines.pipeline import ComponentInput
from payroll_kernel.domain.types import AllowanceType, ResidencyStatus
from payroll_kernel.exceptions import NoApplicableRuleSetError, TaxProfileNotFoundError
from payroll_services.paycheck_service import PaycheckService
from payroll_services.repositories import (
    InMemoryPayrollRepository,
    PayrollRepository,
    SqlPayrollRepository,
)
from tests.factories import (
    FEBRUARY,
    JANUARY,
    allowance,
    full_components,
    monthly_catalog,
    profile,
)

SALARY = (ComponentInput("BASE_SALARY", amount=Decimal("5000")),)


def _holiday(amount):
    return (*SALARY, ComponentInput("HOLIDAY_ALLOWANCE", amount=Decimal(amount)))


class TestInMemoryRepository:

    def setup_method(self):
        self.employee = profile()
        catalog = monthly_catalog(
            allowances=(allowance(), allowance(AllowanceType.HOLIDAY_ALLOWANCE, amount="10016")),
        )
        self.repository = InMemoryPayrollRepository.from_catalog(
            catalog, profiles=(self.employee,), components=full_components(),
        )
        self.service = PaycheckService(self.repository)

    def test_satisfies_protocol(self):
        assert isinstance(self.repository, PayrollRepository)

    def test_calculate(self):
        result = self.service.calculate_paycheck(
            self.employee.employee_id, *JANUARY, earnings=SALARY,
        )

        assert result.net_pay == Decimal("4842.64")
        assert result.currency == "SRD"

    def test_unknown_employee(self, captured_logs):
        with pytest.raises(TaxProfileNotFoundError):
            self.service.calculate_paycheck(uuid4(), *JANUARY, earnings=SALARY)

        failures = [r for r in captured_logs() if r["message"] == "paycheck_calculation_failed"]
        assert failures[0]["error_code"] == "TAX_PROFILE_NOT_FOUND"

    def test_ytd_usage_counts_earlier_pay_dates_only(self):
        employee_id = self.employee.employee_id
        self.repository.record_paycheck(
            employee_id, date(2024, 12, 31), {AllowanceType.HOLIDAY_ALLOWANCE: Decimal("5000")},
        )
        self.repository.record_paycheck(
            employee_id, date(2025, 1, 31), {AllowanceType.HOLIDAY_ALLOWANCE: Decimal("9000")},
        )
        self.repository.record_paycheck(
            employee_id, date(2025, 3, 31), {AllowanceType.HOLIDAY_ALLOWANCE: Decimal("500")},
        )

        usage = self.repository.ytd_capped_usage(employee_id, date(2025, 2, 28))

        assert usage == {AllowanceType.HOLIDAY_ALLOWANCE: Decimal("9000")}

    def test_ytd_usage_reduces_exemption(self):
        self.repository.record_paycheck(
            self.employee.employee_id, date(2025, 1, 31),
            {AllowanceType.HOLIDAY_ALLOWANCE: Decimal("9000")},
        )

        result = self.service.calculate_paycheck(
            self.employee.employee_id, *FEBRUARY, earnings=_holiday("3000"),
        )

        holiday = next(c for c in result.components if c.component_code == "HOLIDAY_ALLOWANCE")
        assert holiday.exempt_amount == Decimal("1016.00")
        assert result.total_tax == Decimal("361.18")

    def test_profile_update_is_picked_up(self):
        self.repository.put_profile(profile(
            employee_id=self.employee.employee_id, residency=ResidencyStatus.NON_RESIDENT,
        ))

        result = self.service.calculate_paycheck(
            self.employee.employee_id, *JANUARY, earnings=SALARY,
        )

        assert result.total_tax == Decimal("550.00")

    def test_pinned_catalog(self):
        service = PaycheckService(self.repository, catalog=monthly_catalog())
        context = service.build_context(self.employee.employee_id, JANUARY[2])
        assert context.catalog.allowances[0].allowance_type is AllowanceType.TAX_FREE_SUM
        assert len(context.catalog.allowances) == 1

    def test_missing_wage_tax_rule_set(self):
        repository = InMemoryPayrollRepository(
            profiles=(self.employee,), allowances=(allowance(),), components=full_components(),
        )
        with pytest.raises(NoApplicableRuleSetError):
            PaycheckService(repository).calculate_paycheck(
                self.employee.employee_id, *JANUARY, earnings=SALARY,
            )

    def test_finalize_needs_assembler(self):
        with pytest.raises(RuntimeError, match="without a PaycheckAssembler"):
            self.service.calculate_and_finalize(
                self.employee.employee_id, *JANUARY, earnings=SALARY, actor_id=uuid4(),
            )


class TestSqlRepository:

    @pytest.fixture
    def employee(self, profile_service, test_actor_id):
        return profile_service.create_profile(profile(), test_actor_id)

    @pytest.fixture
    def repository(self, session, organization_id, published_catalog):
        return SqlPayrollRepository(session, organization_id)

    @pytest.fixture
    def service(self, repository, assembler):
        return PaycheckService(repository, assembler=assembler)

    def test_loads_published_catalog(self, repository):
        catalog = repository.load_catalog()

        assert {r.tax_type.value for r in catalog.rule_sets} == {"wage_tax", "overtime"}
        assert [a.allowance_type for a in catalog.allowances] == [AllowanceType.TAX_FREE_SUM]
        assert [c.code for c in repository.load_components()] == [
            c.code for c in sorted(full_components(), key=lambda c: (c.sequence_order, c.code))
        ]

    def test_other_organization_sees_nothing(self, session):
        repository = SqlPayrollRepository(session, uuid4())

        assert repository.load_catalog().rule_sets == ()
        assert repository.load_components() == ()

    def test_calculate_and_finalize(self, service, employee, test_actor_id):
        record = service.calculate_and_finalize(
            employee.employee_id, *JANUARY, earnings=SALARY, actor_id=test_actor_id,
        )

        assert record.is_finalized
        assert record.net_pay == Decimal("4842.64")

    def test_last_finalized_pay_date(self, service, repository, employee, test_actor_id):
        assert repository.last_finalized_pay_date(employee.employee_id) is None

        service.calculate_and_finalize(
            employee.employee_id, *JANUARY, earnings=SALARY, actor_id=test_actor_id,
        )

        assert repository.last_finalized_pay_date(employee.employee_id) == JANUARY[2]

    def test_ytd_usage_from_finalized_paychecks(
        self, service, repository, rule_catalog_service,
        employee, organization_id, test_actor_id,
    ):
        rule_catalog_service.publish_allowance(
            allowance(AllowanceType.HOLIDAY_ALLOWANCE, amount="10016"), organization_id, test_actor_id,
        )
        service.calculate_and_finalize(
            employee.employee_id, *JANUARY, earnings=_holiday("9000"), actor_id=test_actor_id,
        )

        usage = repository.ytd_capped_usage(employee.employee_id, FEBRUARY[2])
        result = service.calculate_paycheck(employee.employee_id, *FEBRUARY, earnings=_holiday("3000"))

        assert usage == {AllowanceType.HOLIDAY_ALLOWANCE: Decimal("9000")}
        holiday = next(c for c in result.components if c.component_code == "HOLIDAY_ALLOWANCE")
        assert holiday.exempt_amount == Decimal("1016.00")

    def test_voided_paychecks_do_not_count(
        self, service, repository, rule_catalog_service, assembler,
        employee, organization_id, test_actor_id,
    ):
        rule_catalog_service.publish_allowance(
            allowance(AllowanceType.HOLIDAY_ALLOWANCE, amount="10016"), organization_id, test_actor_id,
        )
        record = service.calculate_and_finalize(
            employee.employee_id, *JANUARY, earnings=_holiday("9000"), actor_id=test_actor_id,
        )
        assembler.void_paycheck(record.paycheck_id, "entered twice", test_actor_id)

        assert repository.ytd_capped_usage(employee.employee_id, FEBRUARY[2]) == {}
        assert repository.last_finalized_pay_date(employee.employee_id) is None
