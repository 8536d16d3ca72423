"""Unit tests for PPh21Calculator.

Monthly TER withholding, progressive year-end reconciliation and gross-up.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from payroll_tax_engine.calculators import PPh21Calculator, RateTableStore
from payroll_tax_engine.calculators.types import AnnualHistory, PriorEmployment
from payroll_tax_engine.exceptions import IncompleteAnnualHistory

from .conftest import full_history

SNAPSHOT = RateTableStore.bundled().versions()[0]
CALC = PPh21Calculator(SNAPSHOT)
TK0 = SNAPSHOT.ptkp_categories["TK/0"]


@pytest.fixture
def calc(snapshot) -> PPh21Calculator:
    return PPh21Calculator(snapshot)


class TestMonthlyWithholding:
    """TER rate times gross, rounded to the rupiah."""

    def test_with_npwp(self, calc):
        assert calc.effective_rate(Decimal("0.015")) == Decimal("0.015")
        assert calc.monthly_withholding(Decimal("8000000"), Decimal("0.015")) == Decimal("120000")

    def test_without_npwp_surcharge(self, calc):
        assert calc.effective_rate(Decimal("0.015"), has_npwp=False) == Decimal("0.018")
        assert calc.monthly_withholding(
            Decimal("8000000"), Decimal("0.015"), has_npwp=False
        ) == Decimal("144000")

    def test_rounds_half_up(self, calc):
        # 5,400,100 * 0.25% = 13,500.25
        assert calc.monthly_withholding(Decimal("5400100"), Decimal("0.0025")) == Decimal("13500")
        # 5,400,200 * 0.25% = 13,500.50
        assert calc.monthly_withholding(Decimal("5400200"), Decimal("0.0025")) == Decimal("13501")

    def test_zero_rate(self, calc):
        assert calc.monthly_withholding(Decimal("5000000"), Decimal("0")) == Decimal("0")


class TestProgressiveTax:
    """Annual tax over the progressive brackets."""

    @pytest.mark.parametrize(
        "taxable,tax",
        [
            ("0", "0"),
            ("60000000", "3000000"),
            ("66000000", "3900000"),
            ("250000000", "31500000"),
            ("500000000", "94000000"),
            ("600000000", "124000000"),
        ],
    )
    def test_brackets(self, calc, taxable, tax):
        assert calc.progressive_tax(Decimal(taxable)) == Decimal(tax)

    def test_taxable_income_floors_at_zero(self, calc):
        assert calc.taxable_income(Decimal("96000000"), TK0) == Decimal("42000000")
        assert calc.taxable_income(Decimal("50000000"), TK0) == Decimal("0")
        assert calc.taxable_income(Decimal("50000000"), Decimal("10000000")) == Decimal("40000000")

    @given(
        low=st.integers(min_value=0, max_value=10_000_000_000),
        delta=st.integers(min_value=0, max_value=1_000_000_000),
    )
    def test_tax_is_monotone_and_below_top_rate(self, low, delta):
        first = CALC.progressive_tax(Decimal(low))
        second = CALC.progressive_tax(Decimal(low + delta))
        assert first <= second
        assert second <= Decimal(low + delta) * Decimal("0.35") + 1


class TestReconcile:
    """Year-end true-up."""

    def test_december_extra_withholding(self, calc):
        history = full_history(2024, 12, "10000000", "200000")

        recon = calc.reconcile(history, Decimal("10000000"), Decimal("200000"), TK0)

        assert recon.annual_gross == Decimal("120000000")
        assert recon.taxable_income == Decimal("66000000")
        assert recon.annual_tax == Decimal("3900000")
        assert recon.withheld_to_date == Decimal("2400000")
        assert recon.adjustment == Decimal("1500000")
        assert recon.is_refund is False

    def test_december_refund(self, calc):
        history = full_history(2024, 12, "10000000", "500000")

        recon = calc.reconcile(history, Decimal("10000000"), Decimal("200000"), TK0)

        assert recon.withheld_to_date == Decimal("5700000")
        assert recon.adjustment == Decimal("-1800000")
        assert recon.is_refund is True

    def test_without_npwp(self, calc):
        history = full_history(2024, 12, "10000000", "240000")

        recon = calc.reconcile(
            history, Decimal("10000000"), Decimal("240000"), TK0, has_npwp=False
        )

        assert recon.annual_tax == Decimal("4680000")
        assert recon.adjustment == Decimal("1800000")

    def test_termination_mid_year(self, calc):
        history = full_history(2024, 6, "10000000", "200000")

        recon = calc.reconcile(history, Decimal("10000000"), Decimal("200000"), TK0, month=6)

        assert recon.annual_gross == Decimal("60000000")
        assert recon.annual_tax == Decimal("300000")
        assert recon.adjustment == Decimal("-900000")

    def test_mid_year_start_counts_prior_employment(self, calc):
        history = full_history(2024, 12, "10000000", "200000", start_month=7)
        history.prior_employment = PriorEmployment(Decimal("60000000"), Decimal("1200000"))

        recon = calc.reconcile(history, Decimal("10000000"), Decimal("200000"), TK0)

        assert recon.annual_gross == Decimal("120000000")
        assert recon.withheld_to_date == Decimal("2400000")
        assert recon.adjustment == Decimal("1500000")

    def test_missing_month(self, calc):
        history = full_history(2024, 12, "10000000", "200000")
        del history.months[5]

        with pytest.raises(IncompleteAnnualHistory) as exc_info:
            calc.reconcile(history, Decimal("10000000"), Decimal("200000"), TK0, employee_id="E1")
        assert exc_info.value.missing_months == [5]
        assert exc_info.value.employee_id == "E1"

    def test_mid_year_start_without_prior_employment(self, calc):
        history = full_history(2024, 12, "10000000", "200000", start_month=7)

        with pytest.raises(IncompleteAnnualHistory, match="prior employment"):
            calc.reconcile(history, Decimal("10000000"), Decimal("200000"), TK0)

    def test_start_month_after_period(self, calc):
        history = AnnualHistory(fiscal_year=2024, employment_start_month=8)

        with pytest.raises(IncompleteAnnualHistory):
            calc.check_history(history, 6)


class TestGrossUp:
    """Tax allowance that covers its own tax."""

    def test_known_value(self, calc):
        assert calc.gross_up(Decimal("8000000"), "TK/0") == Decimal("121827")

    def test_below_threshold(self, calc):
        assert calc.gross_up(Decimal("5000000"), "TK/0") == Decimal("0")

    @settings(max_examples=50)
    @given(
        gross=st.integers(min_value=0, max_value=100_000_000),
        has_npwp=st.booleans(),
    )
    def test_allowance_is_fixed_point(self, gross, has_npwp):
        allowance = CALC.gross_up(Decimal(gross), "K/1", has_npwp)
        total = Decimal(gross) + allowance
        rate = CALC.ter_locator.lookup("K/1", total).rate
        assert allowance == CALC.monthly_withholding(total, rate, has_npwp)
