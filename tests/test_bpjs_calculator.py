"""Unit tests for BPJSCalculator."""

from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from payroll_tax_engine.calculators import BPJSCalculator, RateTableStore
from payroll_tax_engine.calculators.types import BPJSProgram, round_rupiah
from payroll_tax_engine.exceptions import InvalidPayrollInput, UnsupportedProgram

CALC = BPJSCalculator(RateTableStore.bundled().versions()[0])


@pytest.fixture
def calc(snapshot) -> BPJSCalculator:
    return BPJSCalculator(snapshot)


class TestContributions:
    """Per-program shares."""

    def test_below_caps(self, calc):
        result = calc.compute(Decimal("8000000"))

        kes = result.get(BPJSProgram.KESEHATAN)
        assert kes.employee_share == Decimal("80000")
        assert kes.company_share == Decimal("320000")
        assert result.get(BPJSProgram.JKK).company_share == Decimal("19200")
        assert result.get(BPJSProgram.JKM).company_share == Decimal("24000")
        assert result.get(BPJSProgram.JHT).employee_share == Decimal("160000")
        assert result.get(BPJSProgram.JHT).company_share == Decimal("296000")
        assert result.get(BPJSProgram.JP).employee_share == Decimal("80000")

        assert result.employee_total == Decimal("320000")
        assert result.company_total == Decimal("819200")

    def test_above_caps(self, calc):
        result = calc.compute(Decimal("15000000"))

        kes = result.get(BPJSProgram.KESEHATAN)
        assert kes.base == Decimal("12000000")
        assert kes.employee_share == Decimal("120000")
        assert kes.company_share == Decimal("480000")

        jp = result.get(BPJSProgram.JP)
        assert jp.base == Decimal("10042300")
        assert jp.employee_share == Decimal("100423")
        assert jp.company_share == Decimal("200846")

        # uncapped
        assert result.get(BPJSProgram.JHT).base == Decimal("15000000")

    def test_zero_gross(self, calc):
        result = calc.compute(Decimal("0"))
        assert result.employee_total == 0
        assert result.company_total == 0

    def test_negative_gross(self, calc):
        with pytest.raises(InvalidPayrollInput):
            calc.compute(Decimal("-1"))

    def test_to_dict(self, calc):
        data = calc.compute(Decimal("8000000")).to_dict()
        assert list(data) == ["Kesehatan", "JKK", "JKM", "JHT", "JP"]
        assert data["JHT"]["employee_share"] == "160000"

    def test_rate_for(self, calc):
        assert calc.rate_for("JP").salary_cap == Decimal("10042300")
        assert calc.rate_for(BPJSProgram.JKK).salary_cap is None
        with pytest.raises(UnsupportedProgram):
            calc.rate_for("Tapera")

    @given(gross=st.integers(min_value=0, max_value=500_000_000))
    def test_shares_follow_rates_and_caps(self, gross):
        result = CALC.compute(Decimal(gross))

        for share in result.shares:
            rate = CALC.rate_for(share.program)
            if rate.salary_cap is not None:
                assert share.base <= rate.salary_cap
            assert share.base <= gross
            assert share.employee_share == round_rupiah(share.base * rate.employee_rate)
            assert share.company_share == round_rupiah(share.base * rate.company_rate)

        assert result.employee_total == sum(s.employee_share for s in result.shares)
        assert result.company_total == sum(s.company_share for s in result.shares)
