"""TER (tarif efektif rata-rata) bracket lookup."""

from __future__ import annotations

import bisect
from decimal import Decimal

from payroll_tax_engine.calculators.rate_store import RateTableSnapshot
from payroll_tax_engine.calculators.types import TERBracket, TerRate
from payroll_tax_engine.exceptions import InvalidPayrollInput, NoBracketForCategory


class TERLocator:
    """Finds the TER bracket for a PTKP code and monthly gross income."""

    def __init__(self, snapshot: RateTableSnapshot):
        self.snapshot = snapshot
        self._lower_bounds: dict[str, list[Decimal]] = {
            category: [b.min_monthly_income for b in brackets]
            for category, brackets in snapshot.ter_brackets.items()
        }

    def category_for(self, ptkp_code: str) -> str:
        category = self.snapshot.ter_category_map.get(ptkp_code)
        if category is None:
            raise NoBracketForCategory(ptkp_code, self.snapshot.version)
        return category

    def brackets_for(self, ptkp_code: str) -> tuple[TERBracket, ...]:
        category = self.category_for(ptkp_code)
        brackets = self.snapshot.ter_brackets.get(category)
        if not brackets:
            raise NoBracketForCategory(ptkp_code, self.snapshot.version, category)
        return brackets

    def lookup(self, ptkp_code: str, monthly_gross_income: Decimal) -> TerRate:
        """Return the category, rate, and bracket for a monthly income.

        Raises:
            InvalidPayrollInput: If income is negative
            NoBracketForCategory: If the code has no TER table
        """
        if monthly_gross_income < 0:
            raise InvalidPayrollInput(
                "monthly_gross_income", monthly_gross_income, "must not be negative"
            )
        brackets = self.brackets_for(ptkp_code)
        category = brackets[0].category

        # Brackets start at 0, so income >= 0 always lands in one.
        idx = bisect.bisect_right(self._lower_bounds[category], monthly_gross_income) - 1
        bracket = brackets[idx]
        return TerRate(
            ptkp_code=ptkp_code,
            category=category,
            rate=bracket.rate,
            bracket=bracket,
        )
