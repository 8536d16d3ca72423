"""PPh 21 withholding: monthly TER and year-end progressive reconciliation."""

from __future__ import annotations

import logging
from decimal import Decimal

from payroll_tax_engine.calculators.rate_store import RateTableSnapshot
from payroll_tax_engine.calculators.ter_locator import TERLocator
from payroll_tax_engine.calculators.types import (
    ZERO,
    AnnualHistory,
    AnnualReconciliation,
    PTKPCategory,
    round_rupiah,
)
from payroll_tax_engine.exceptions import IncompleteAnnualHistory, PayrollEngineError

logger = logging.getLogger(__name__)

GROSS_UP_MAX_ITERATIONS = 100


def _ptkp_amount(ptkp: PTKPCategory | Decimal) -> Decimal:
    return ptkp.annual_allowance if isinstance(ptkp, PTKPCategory) else ptkp


class PPh21Calculator:
    """Employee income tax for one rate-table snapshot.

    Within a fiscal year each month is withheld at the TER rate for its
    gross income. The final period (December, or the month employment ends)
    recomputes the whole year with the progressive brackets and withholds or
    refunds the difference.
    """

    def __init__(self, snapshot: RateTableSnapshot, ter_locator: TERLocator | None = None):
        self.snapshot = snapshot
        self.ter_locator = ter_locator or TERLocator(snapshot)

    def effective_rate(self, ter_rate: Decimal, has_npwp: bool = True) -> Decimal:
        """TER rate, raised by the non-NPWP surcharge when applicable."""
        if has_npwp or not self.snapshot.non_npwp_surcharge:
            return ter_rate
        return ter_rate * (1 + self.snapshot.non_npwp_surcharge)

    def monthly_withholding(
        self,
        gross: Decimal,
        ter_rate: Decimal,
        has_npwp: bool = True,
    ) -> Decimal:
        return round_rupiah(gross * self.effective_rate(ter_rate, has_npwp))

    @staticmethod
    def taxable_income(annual_gross_to_date: Decimal, ptkp: PTKPCategory | Decimal) -> Decimal:
        """PKP: gross less PTKP, floored at zero."""
        return max(annual_gross_to_date - _ptkp_amount(ptkp), ZERO)

    def progressive_tax(self, taxable_income: Decimal) -> Decimal:
        """Annual tax over the progressive brackets."""
        total = ZERO
        for bracket in self.snapshot.progressive_brackets:
            portion = bracket.overlap(taxable_income)
            if portion <= 0:
                break
            total += portion * bracket.rate
        return round_rupiah(total)

    def check_history(
        self,
        history: AnnualHistory,
        month: int,
        employee_id: str | None = None,
    ) -> None:
        """Verify every month before ``month`` can be accounted for.

        Raises:
            IncompleteAnnualHistory: If a month is missing, the start month is
                out of range, or a mid-year hire has no prior-employment entry
        """
        start = history.employment_start_month
        if not 1 <= start <= month:
            raise IncompleteAnnualHistory(
                employee_id,
                history.fiscal_year,
                reason=f"employment start month {start} is outside 1..{month}",
            )
        missing = history.missing_months(month)
        if missing:
            raise IncompleteAnnualHistory(employee_id, history.fiscal_year, missing)
        if start > 1 and history.prior_employment is None:
            raise IncompleteAnnualHistory(
                employee_id,
                history.fiscal_year,
                reason="prior employment income is required for a mid-year start",
            )

    def reconcile(
        self,
        history: AnnualHistory,
        current_gross: Decimal,
        current_withholding: Decimal,
        ptkp: PTKPCategory | Decimal,
        *,
        month: int = 12,
        has_npwp: bool = True,
        employee_id: str | None = None,
    ) -> AnnualReconciliation:
        """Year-end true-up.

        ``adjustment`` is positive when more tax must be withheld in the final
        period and negative when the employee is owed a refund.
        """
        self.check_history(history, month, employee_id)

        annual_gross = history.gross_before(month) + current_gross
        withheld = history.withheld_before(month) + current_withholding
        ptkp_amount = _ptkp_amount(ptkp)
        taxable = self.taxable_income(annual_gross, ptkp_amount)
        annual_tax = self.progressive_tax(taxable)
        if not has_npwp and self.snapshot.non_npwp_surcharge:
            annual_tax = round_rupiah(annual_tax * (1 + self.snapshot.non_npwp_surcharge))

        return AnnualReconciliation(
            fiscal_year=history.fiscal_year,
            annual_gross=annual_gross,
            ptkp_amount=ptkp_amount,
            taxable_income=taxable,
            annual_tax=annual_tax,
            withheld_to_date=withheld,
            adjustment=annual_tax - withheld,
        )

    def gross_up(self, gross: Decimal, ptkp_code: str, has_npwp: bool = True) -> Decimal:
        """Tax allowance T such that T = round(rate(G + T) * (G + T)).

        The iteration starts at 0 and never decreases, so it settles on the
        smallest fixed point.
        """
        allowance = ZERO
        for _ in range(GROSS_UP_MAX_ITERATIONS):
            total = gross + allowance
            ter = self.ter_locator.lookup(ptkp_code, total)
            next_allowance = self.monthly_withholding(total, ter.rate, has_npwp)
            if next_allowance == allowance:
                return allowance
            allowance = next_allowance

        logger.error("Gross-up did not converge for gross=%s ptkp=%s", gross, ptkp_code)
        raise PayrollEngineError(f"Gross-up did not converge for gross {gross}")
