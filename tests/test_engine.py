"""Tests for PayrollEngine.compute_payroll."""

from dataclasses import replace
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from payroll_tax_engine.calculators import PayrollEngine, RateTableStore
from payroll_tax_engine.calculators.types import (
    AnnualHistory,
    EmployeeTaxProfile,
    MonthlyIncome,
    PayrollRecord,
    PayType,
    SalaryComponents,
    TaxableIncomeBasis,
)
from payroll_tax_engine.exceptions import (
    IncompleteAnnualHistory,
    InvalidPayrollInput,
    NoBracketForCategory,
    RateTableNotFoundError,
    UnknownCategory,
)
from payroll_tax_engine.services.state_machine import FiscalYearStatus

from .conftest import FIXED_NOW, bundled_payload, full_history

ENGINE = PayrollEngine(RateTableStore.bundled(), clock=lambda: FIXED_NOW)


def profile(ptkp_code: str | None = "TK/0", npwp: str | None = "01.234.567.8-901.000",
            employee_id: str = "E001") -> EmployeeTaxProfile:
    return EmployeeTaxProfile(employee_id=employee_id, ptkp_code=ptkp_code, npwp=npwp)


class TestMonthlyRecord:
    """Single non-final period."""

    def test_tk0_eight_million(self, engine):
        record = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"))

        assert record.ptkp_status == "TK/0"
        assert record.ptkp_amount == Decimal("54000000")
        assert record.ter_category == "A"
        assert record.ter_rate == Decimal("0.015")
        assert record.pph21 == Decimal("120000")
        assert record.pph21_adjustment == Decimal("0")
        assert record.bpjs_employee_total == Decimal("320000")
        assert record.bpjs_company_total == Decimal("819200")
        assert record.net_salary == Decimal("7560000")
        assert record.total_cost_to_company == Decimal("8819200")
        assert record.fiscal_status == FiscalYearStatus.MONTHLY_WITHHOLDING.value
        assert record.rate_table_version == "2024-01-01"
        assert record.computed_at == FIXED_NOW
        assert record.reconciliation is None

    def test_flat_five_percent_table(self, flat_store):
        engine = PayrollEngine(flat_store)

        record = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"))

        assert record.ter_rate == Decimal("0.05")
        assert record.pph21 == Decimal("400000")
        assert record.rate_table_version == "flat-2024"

    def test_without_npwp(self, engine):
        record = engine.compute_payroll(profile(npwp=None), "2024-01", Decimal("8000000"))
        assert record.pph21 == Decimal("144000")

    def test_blank_npwp_counts_as_missing(self, engine):
        record = engine.compute_payroll(profile(npwp="  "), "2024-01", Decimal("8000000"))
        assert record.pph21 == Decimal("144000")

    def test_zero_gross(self, engine):
        record = engine.compute_payroll(profile(), "2024-03", Decimal("0"))

        assert record.pph21 == Decimal("0")
        assert record.bpjs_employee_total == Decimal("0")
        assert record.net_salary == Decimal("0")
        assert record.taxable_income == Decimal("0")

    def test_annualized_taxable_income_without_history(self, engine):
        record = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"))

        assert record.taxable_income_basis is TaxableIncomeBasis.ANNUALIZED
        assert record.taxable_income == Decimal("42000000")

    def test_year_to_date_taxable_income_with_history(self, engine):
        history = full_history(2024, 4, "8000000", "120000")

        record = engine.compute_payroll(profile(), "2024-04", Decimal("8000000"), history=history)

        assert record.taxable_income_basis is TaxableIncomeBasis.YEAR_TO_DATE
        # 4 * 8M - 54M, floored
        assert record.taxable_income == Decimal("0")
        assert record.pph21 == Decimal("120000")

    def test_components_must_sum_to_gross(self, engine):
        components = SalaryComponents(
            basic_salary=Decimal("6000000"),
            allowances=Decimal("1500000"),
            overtime=Decimal("500000"),
        )
        record = engine.compute_payroll(
            profile(), "2024-01", Decimal("8000000"), components=components
        )
        assert record.pph21 == Decimal("120000")

        with pytest.raises(InvalidPayrollInput) as exc_info:
            engine.compute_payroll(
                profile(), "2024-01", Decimal("9000000"), components=components
            )
        assert exc_info.value.field == "components"


class TestValidation:
    """Inputs are rejected before any table lookup."""

    def test_negative_gross(self, engine):
        with pytest.raises(InvalidPayrollInput) as exc_info:
            engine.compute_payroll(profile(), "2024-01", Decimal("-1"))
        assert exc_info.value.field == "gross_salary"

    def test_missing_gross(self, engine):
        with pytest.raises(InvalidPayrollInput):
            engine.compute_payroll(profile(), "2024-01", None)  # type: ignore[arg-type]

    def test_missing_ptkp(self, engine):
        with pytest.raises(InvalidPayrollInput) as exc_info:
            engine.compute_payroll(profile(ptkp_code=None), "2024-01", Decimal("8000000"))
        assert exc_info.value.field == "ptkp_code"

    @pytest.mark.parametrize("period", ["2024-13", "2024-1", "24-01", "", "2024/01"])
    def test_bad_period(self, engine, period):
        with pytest.raises(InvalidPayrollInput) as exc_info:
            engine.compute_payroll(profile(), period, Decimal("8000000"))
        assert exc_info.value.field == "period"

    def test_bad_pay_type(self, engine):
        with pytest.raises(InvalidPayrollInput):
            engine.compute_payroll(profile(), "2024-01", Decimal("8000000"), pay_type="net")

    def test_negative_gross_reported_before_missing_table(self, engine):
        # 2023 has no rate table, but the input error wins
        with pytest.raises(InvalidPayrollInput):
            engine.compute_payroll(profile(), "2023-06", Decimal("-1"))

    def test_history_for_other_year(self, engine):
        history = full_history(2023, 3, "8000000", "120000")
        with pytest.raises(InvalidPayrollInput) as exc_info:
            engine.compute_payroll(profile(), "2024-03", Decimal("8000000"), history=history)
        assert exc_info.value.field == "history.fiscal_year"

    def test_history_month_not_before_period(self, engine):
        history = full_history(2024, 3, "8000000", "120000")
        history.months[3] = MonthlyIncome(Decimal("8000000"), Decimal("120000"))
        with pytest.raises(InvalidPayrollInput):
            engine.compute_payroll(profile(), "2024-03", Decimal("8000000"), history=history)

    def test_negative_history_amount(self, engine):
        history = full_history(2024, 3, "8000000", "120000")
        history.months[1] = MonthlyIncome(Decimal("-5"), Decimal("0"))
        with pytest.raises(InvalidPayrollInput):
            engine.compute_payroll(profile(), "2024-03", Decimal("8000000"), history=history)

    def test_incomplete_history_in_monthly_period(self, engine):
        history = AnnualHistory(fiscal_year=2024, months={})
        with pytest.raises(IncompleteAnnualHistory) as exc_info:
            engine.compute_payroll(profile(), "2024-03", Decimal("8000000"), history=history)
        assert exc_info.value.missing_months == [1, 2]


class TestConfigurationErrors:
    """Missing or incomplete tables are never defaulted."""

    def test_period_before_every_table(self, engine):
        with pytest.raises(RateTableNotFoundError):
            engine.compute_payroll(profile(), "2023-12", Decimal("8000000"))

    def test_unknown_ptkp_category(self):
        payload = bundled_payload()
        payload["ptkp_categories"] = [r for r in payload["ptkp_categories"] if r["code"] != "K/3"]
        del payload["ter_category_map"]["K/3"]
        engine = PayrollEngine(RateTableStore.from_payloads([payload]))

        with pytest.raises(UnknownCategory):
            engine.compute_payroll(profile("K/3"), "2024-01", Decimal("8000000"))

    def test_code_without_ter_category(self):
        payload = bundled_payload()
        del payload["ter_category_map"]["K/I/1"]
        engine = PayrollEngine(RateTableStore.from_payloads([payload]))

        with pytest.raises(NoBracketForCategory):
            engine.compute_payroll(profile("K/I/1"), "2024-01", Decimal("8000000"))


class TestFinalPeriod:
    """December and termination months reconcile the whole year."""

    def test_december_reconciliation(self, engine):
        history = full_history(2024, 12, "10000000", "200000")

        record = engine.compute_payroll(
            profile(), "2024-12", Decimal("10000000"), history=history
        )

        assert record.fiscal_status == FiscalYearStatus.ANNUAL_RECONCILIATION.value
        assert record.pph21 == Decimal("200000")
        assert record.pph21_adjustment == Decimal("1500000")
        assert record.total_pph21 == Decimal("1700000")
        assert record.taxable_income == Decimal("66000000")
        assert record.reconciliation is not None
        assert record.reconciliation.annual_tax == Decimal("3900000")
        # 10M - 200k - 1.5M - 400k BPJS
        assert record.net_salary == Decimal("7900000")

    def test_december_requires_history(self, engine):
        with pytest.raises(IncompleteAnnualHistory):
            engine.compute_payroll(profile(), "2024-12", Decimal("10000000"))

    def test_december_with_missing_month(self, engine):
        history = full_history(2024, 12, "10000000", "200000")
        del history.months[11]
        with pytest.raises(IncompleteAnnualHistory) as exc_info:
            engine.compute_payroll(profile(), "2024-12", Decimal("10000000"), history=history)
        assert exc_info.value.missing_months == [11]

    def test_termination_month_reconciles(self, engine):
        history = full_history(2024, 6, "10000000", "200000")

        record = engine.compute_payroll(
            profile(), "2024-06", Decimal("10000000"), history=history, terminated=True
        )

        assert record.fiscal_status == FiscalYearStatus.ANNUAL_RECONCILIATION.value
        assert record.pph21_adjustment == Decimal("-900000")
        assert record.reconciliation.is_refund is True
        assert record.net_salary == Decimal("10000000") - Decimal("200000") + Decimal(
            "900000"
        ) - Decimal("400000")


class TestGrossUp:
    """Company-borne tax via allowance."""

    def test_allowance_covers_tax(self, engine):
        record = engine.compute_payroll(
            profile(), "2024-01", Decimal("8000000"), pay_type=PayType.GROSS_UP
        )

        assert record.pay_type is PayType.GROSS_UP
        assert record.tax_allowance == Decimal("121827")
        assert record.gross_salary == Decimal("8121827")
        assert record.pph21 == record.tax_allowance
        # BPJS stays on the base salary
        assert record.bpjs_employee_total == Decimal("320000")
        assert record.net_salary == Decimal("8000000") - Decimal("320000")

    def test_pay_type_accepts_string(self, engine):
        record = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"), pay_type="gross_up")
        assert record.tax_allowance == Decimal("121827")


class TestDeterminism:
    """Same inputs, same record."""

    def test_recompute_is_identical(self, engine):
        first = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"))
        second = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"))

        assert first.record_id == second.record_id
        assert first.to_canonical_dict() == second.to_canonical_dict()

    def test_record_id_ignores_clock(self, store):
        first = PayrollEngine(store, clock=lambda: FIXED_NOW).compute_payroll(
            profile(), "2024-01", Decimal("8000000")
        )
        second = PayrollEngine(store).compute_payroll(profile(), "2024-01", Decimal("8000000"))

        assert first.record_id == second.record_id
        assert first.to_canonical_dict() == second.to_canonical_dict()

    def test_record_id_changes_with_inputs(self, engine):
        base = engine.compute_payroll(profile(), "2024-01", Decimal("8000000"))
        other_gross = engine.compute_payroll(profile(), "2024-01", Decimal("8000001"))
        other_period = engine.compute_payroll(profile(), "2024-02", Decimal("8000000"))

        assert len({base.record_id, other_gross.record_id, other_period.record_id}) == 3

    def test_record_id_changes_with_engine_version(self, store):
        first = PayrollEngine(store, engine_version="1.0.0").compute_payroll(
            profile(), "2024-01", Decimal("8000000")
        )
        second = PayrollEngine(store, engine_version="1.1.0").compute_payroll(
            profile(), "2024-01", Decimal("8000000")
        )
        assert first.inputs_fingerprint == second.inputs_fingerprint
        assert first.record_id != second.record_id

    def test_dict_round_trip(self, engine):
        history = full_history(2024, 12, "10000000", "200000")
        record = engine.compute_payroll(
            profile(), "2024-12", Decimal("10000000"), history=history
        )

        rebuilt = PayrollRecord.from_dict(record.to_dict())

        assert rebuilt == record
        assert replace(rebuilt, version=2).to_canonical_dict() == record.to_canonical_dict()

    @given(
        gross=st.integers(min_value=0, max_value=300_000_000),
        code=st.sampled_from(["TK/0", "TK/3", "K/1", "K/I/0", "K/3"]),
        npwp=st.sampled_from([None, "01.234.567.8-901.000"]),
    )
    def test_net_balances(self, gross, code, npwp):
        record = ENGINE.compute_payroll(profile(code, npwp), "2024-05", Decimal(gross))

        assert record.net_salary + record.pph21 + record.bpjs_employee_total == Decimal(gross)
        assert record.total_cost_to_company == Decimal(gross) + record.bpjs_company_total
        assert record.pph21 >= 0

    @settings(max_examples=40)
    @given(
        salaries=st.lists(
            st.integers(min_value=0, max_value=60_000_000), min_size=12, max_size=12
        ),
        code=st.sampled_from(["TK/0", "K/2", "K/I/3"]),
    )
    def test_year_end_closes_to_annual_tax(self, salaries, code):
        history = AnnualHistory(fiscal_year=2024)
        records = []
        for month, gross in enumerate(salaries, start=1):
            record = ENGINE.compute_payroll(
                profile(code), f"2024-{month:02d}", Decimal(gross), history=history
            )
            records.append(record)
            history.months[month] = MonthlyIncome(record.gross_salary, record.total_pph21)

        december = records[-1]
        withheld = sum((r.total_pph21 for r in records), Decimal("0"))
        assert december.reconciliation is not None
        assert withheld == december.reconciliation.annual_tax
