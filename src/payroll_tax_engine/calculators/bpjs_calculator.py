"""BPJS Kesehatan and Ketenagakerjaan contributions."""

from __future__ import annotations

from decimal import Decimal

from payroll_tax_engine.calculators.rate_store import RateTableSnapshot
from payroll_tax_engine.calculators.types import (
    BPJSContributions,
    BPJSProgram,
    BPJSProgramRate,
    BPJSShare,
    round_rupiah,
)
from payroll_tax_engine.exceptions import InvalidPayrollInput, UnsupportedProgram


class BPJSCalculator:
    """Per-program employee and company shares.

    Each program contributes ``rate * min(gross, cap)``, rounded half-up per
    program. Rates and caps come from the snapshot only.
    """

    def __init__(self, snapshot: RateTableSnapshot):
        self.snapshot = snapshot

    def compute(self, gross_salary: Decimal) -> BPJSContributions:
        if gross_salary < 0:
            raise InvalidPayrollInput("gross_salary", gross_salary, "must not be negative")
        return BPJSContributions(
            shares=tuple(self._share(rate, gross_salary) for rate in self.snapshot.bpjs_rates)
        )

    def rate_for(self, program: BPJSProgram | str) -> BPJSProgramRate:
        try:
            key = BPJSProgram(program)
        except ValueError:
            raise UnsupportedProgram(program) from None
        for rate in self.snapshot.bpjs_rates:
            if rate.program == key:
                return rate
        raise UnsupportedProgram(program)

    @staticmethod
    def _share(rate: BPJSProgramRate, gross_salary: Decimal) -> BPJSShare:
        if not isinstance(rate.program, BPJSProgram):
            raise UnsupportedProgram(rate.program)
        base = rate.contribution_base(gross_salary)
        return BPJSShare(
            program=rate.program,
            base=base,
            employee_share=round_rupiah(base * rate.employee_rate),
            company_share=round_rupiah(base * rate.company_rate),
        )
