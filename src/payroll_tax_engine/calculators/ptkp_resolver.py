"""PTKP (non-taxable income) category resolution."""

from __future__ import annotations

import re

from payroll_tax_engine.calculators.rate_store import MAX_DEPENDENTS, RateTableSnapshot
from payroll_tax_engine.calculators.types import MaritalStatus, PTKPCategory
from payroll_tax_engine.exceptions import InvalidPayrollInput, UnknownCategory

_CODE_RE = re.compile(r"^(TK|K)(/I)?/(\d+)$")


class PTKPResolver:
    """Maps family status to a PTKP category of one rate-table snapshot.

    The allowance always comes from the snapshot's table row; a code with no
    row is a configuration error, never a default.
    """

    def __init__(self, snapshot: RateTableSnapshot):
        self.snapshot = snapshot

    def resolve(
        self,
        marital_status: MaritalStatus | str,
        income_combined: bool,
        dependents: int,
    ) -> PTKPCategory:
        """Resolve a PTKP category.

        Dependents above the statutory maximum of 3 are clamped.

        Raises:
            InvalidPayrollInput: For negative or non-integer dependents, an
                unknown marital status, or combined income without marriage
            UnknownCategory: If the snapshot has no row for the code
        """
        try:
            status = MaritalStatus(marital_status)
        except ValueError:
            raise InvalidPayrollInput(
                "marital_status", marital_status, "expected TK or K"
            ) from None

        if isinstance(dependents, bool) or not isinstance(dependents, int):
            raise InvalidPayrollInput("dependents", dependents, "must be an integer")
        if dependents < 0:
            raise InvalidPayrollInput("dependents", dependents, "must not be negative")
        if income_combined and status is not MaritalStatus.K:
            raise InvalidPayrollInput(
                "income_combined", income_combined, "only married (K) filers can combine income"
            )

        code = PTKPCategory.build_code(status, bool(income_combined), min(dependents, MAX_DEPENDENTS))
        category = self.snapshot.ptkp_categories.get(code)
        if category is None:
            raise UnknownCategory(code, self.snapshot.version)
        return category

    def resolve_code(self, code: str) -> PTKPCategory:
        """Resolve a profile code such as ``"K/I/2"``."""
        if not code or not isinstance(code, str):
            raise InvalidPayrollInput("ptkp_code", code, "value is required")
        match = _CODE_RE.match(code.strip().upper())
        if match is None:
            raise InvalidPayrollInput("ptkp_code", code, "expected TK/n, K/n or K/I/n")
        status, combined, dependents = match.groups()
        return self.resolve(status, combined is not None, int(dependents))
