"""Payroll calculation engine - main orchestrator."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from payroll_tax_engine.calculators.bpjs_calculator import BPJSCalculator
from payroll_tax_engine.calculators.pph21_calculator import PPh21Calculator
from payroll_tax_engine.calculators.ptkp_resolver import PTKPResolver
from payroll_tax_engine.calculators.rate_store import RateTableSnapshot, RateTableStore
from payroll_tax_engine.calculators.ter_locator import TERLocator
from payroll_tax_engine.calculators.types import (
    ZERO,
    AnnualHistory,
    EmployeeTaxProfile,
    PayrollRecord,
    PayType,
    SalaryComponents,
    TaxableIncomeBasis,
)
from payroll_tax_engine.exceptions import (
    IncompleteAnnualHistory,
    InvalidPayrollInput,
    require_non_negative,
)
from payroll_tax_engine.periods import parse_period
from payroll_tax_engine.services.state_machine import FiscalYearStateMachine, FiscalYearStatus

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayrollEngine:
    """Payroll tax and contribution engine.

    Calculation pipeline (stable order per employee):
    1) Validate inputs
    2) Select the rate table in force for the period
    3) Resolve PTKP, locate the TER bracket, withhold PPh 21
    4) Compute BPJS shares
    5) Derive taxable income (year-to-date or annualized)
    6) Reconcile against the progressive brackets in the final period
    7) Assemble the record with a deterministic id

    The engine holds no mutable state; one instance can serve many threads.
    """

    def __init__(
        self,
        store: RateTableStore,
        engine_version: str = "1.0.0",
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.engine_version = engine_version
        self.clock = clock or _utcnow

    def compute_payroll(
        self,
        profile: EmployeeTaxProfile,
        period: str,
        gross_salary: Decimal,
        *,
        components: SalaryComponents | None = None,
        history: AnnualHistory | None = None,
        terminated: bool = False,
        pay_type: PayType | str = PayType.GROSS,
    ) -> PayrollRecord:
        """Compute one employee's record for one period.

        Raises:
            InvalidPayrollInput: If an input fails validation (before any lookup)
            IncompleteAnnualHistory: If the final period lacks full history
            ConfigurationError: If the rate table cannot serve the request
        """
        gross = require_non_negative("gross_salary", gross_salary)
        if not profile.ptkp_code:
            raise InvalidPayrollInput("ptkp_code", profile.ptkp_code, "value is required")
        year, month = parse_period(period)
        try:
            pay_type = PayType(pay_type)
        except ValueError:
            raise InvalidPayrollInput("pay_type", pay_type, "expected gross or gross_up") from None
        self._validate_components(components, gross)
        self._validate_history(history, year, month)

        snapshot = self.store.for_period(period)
        return self._compute(
            snapshot, profile, period, month, gross, components, history, terminated, pay_type
        )

    def _compute(
        self,
        snapshot: RateTableSnapshot,
        profile: EmployeeTaxProfile,
        period: str,
        month: int,
        gross: Decimal,
        components: SalaryComponents | None,
        history: AnnualHistory | None,
        terminated: bool,
        pay_type: PayType,
    ) -> PayrollRecord:
        has_npwp = profile.has_npwp
        ptkp = PTKPResolver(snapshot).resolve_code(profile.ptkp_code)
        locator = TERLocator(snapshot)
        pph21_calc = PPh21Calculator(snapshot, locator)

        tax_allowance = ZERO
        if pay_type is PayType.GROSS_UP:
            tax_allowance = pph21_calc.gross_up(gross, ptkp.code, has_npwp)
        taxable_gross = gross + tax_allowance

        ter = locator.lookup(ptkp.code, taxable_gross)
        pph21 = pph21_calc.monthly_withholding(taxable_gross, ter.rate, has_npwp)
        bpjs = BPJSCalculator(snapshot).compute(gross)

        if history is not None:
            pph21_calc.check_history(history, month, profile.employee_id)
            taxable_income = pph21_calc.taxable_income(
                history.gross_before(month) + taxable_gross, ptkp
            )
            basis = TaxableIncomeBasis.YEAR_TO_DATE
        else:
            taxable_income = pph21_calc.taxable_income(taxable_gross * MONTHS_PER_YEAR, ptkp)
            basis = TaxableIncomeBasis.ANNUALIZED

        status = FiscalYearStateMachine.status_for(period, terminated)
        reconciliation = None
        adjustment = ZERO
        if status is FiscalYearStatus.ANNUAL_RECONCILIATION:
            if history is None:
                raise IncompleteAnnualHistory(
                    profile.employee_id,
                    parse_period(period)[0],
                    reason="annual history is required in the final period",
                )
            reconciliation = pph21_calc.reconcile(
                history,
                taxable_gross,
                pph21,
                ptkp,
                month=month,
                has_npwp=has_npwp,
                employee_id=profile.employee_id,
            )
            adjustment = reconciliation.adjustment

        bpjs_employee_total = bpjs.employee_total
        bpjs_company_total = bpjs.company_total
        net = taxable_gross - pph21 - adjustment - bpjs_employee_total

        inputs_fingerprint = self._compute_inputs_fingerprint(
            profile, period, gross, components, history, terminated, pay_type
        )
        record_id = self._generate_record_id(
            profile.employee_id, period, inputs_fingerprint, snapshot.fingerprint
        )

        logger.debug(
            "Computed %s %s: ter=%s/%s pph21=%s adj=%s",
            profile.employee_id,
            period,
            ter.category,
            ter.rate,
            pph21,
            adjustment,
        )

        return PayrollRecord(
            record_id=record_id,
            employee_id=profile.employee_id,
            period=period,
            gross_salary=taxable_gross,
            taxable_income=taxable_income,
            taxable_income_basis=basis,
            ptkp_status=ptkp.code,
            ptkp_amount=ptkp.annual_allowance,
            ter_category=ter.category,
            ter_rate=ter.rate,
            pph21=pph21,
            pph21_adjustment=adjustment,
            bpjs=bpjs,
            bpjs_employee_total=bpjs_employee_total,
            bpjs_company_total=bpjs_company_total,
            net_salary=net,
            total_cost_to_company=taxable_gross + bpjs_company_total,
            pay_type=pay_type,
            tax_allowance=tax_allowance,
            rate_table_version=snapshot.version,
            fiscal_status=status.value,
            inputs_fingerprint=inputs_fingerprint,
            computed_at=self.clock(),
            reconciliation=reconciliation,
        )

    # === Validation ===

    @staticmethod
    def _validate_components(components: SalaryComponents | None, gross: Decimal) -> None:
        if components is None:
            return
        for name, value in components.as_dict().items():
            require_non_negative(f"components.{name}", Decimal(value))
        if components.total != gross:
            raise InvalidPayrollInput(
                "components", components.total, f"sum does not equal gross salary {gross}"
            )

    @staticmethod
    def _validate_history(history: AnnualHistory | None, year: int, month: int) -> None:
        if history is None:
            return
        if history.fiscal_year != year:
            raise InvalidPayrollInput(
                "history.fiscal_year", history.fiscal_year, f"does not match period year {year}"
            )
        for m, income in history.months.items():
            if not 1 <= m < month:
                raise InvalidPayrollInput(
                    "history.months", m, f"must be an earlier month of {year}"
                )
            require_non_negative(f"history.months[{m}].gross", income.gross)
            require_non_negative(f"history.months[{m}].pph21_withheld", income.pph21_withheld)
        if history.prior_employment is not None:
            require_non_negative("history.prior_employment.gross", history.prior_employment.gross)
            require_non_negative(
                "history.prior_employment.pph21_withheld",
                history.prior_employment.pph21_withheld,
            )

    # === Fingerprints ===

    def _compute_inputs_fingerprint(
        self,
        profile: EmployeeTaxProfile,
        period: str,
        gross: Decimal,
        components: SalaryComponents | None,
        history: AnnualHistory | None,
        terminated: bool,
        pay_type: PayType,
    ) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        inputs_data: dict[str, Any] = {
            "employee_id": profile.employee_id,
            "ptkp_code": profile.ptkp_code,
            "has_npwp": profile.has_npwp,
            "period": period,
            "gross_salary": str(gross),
            "components": components.as_dict() if components else None,
            "terminated": terminated,
            "pay_type": pay_type.value,
            "history": None,
        }
        if history is not None:
            inputs_data["history"] = {
                "fiscal_year": history.fiscal_year,
                "employment_start_month": history.employment_start_month,
                "months": {
                    str(m): [str(i.gross), str(i.pph21_withheld)]
                    for m, i in sorted(history.months.items())
                },
                "prior_employment": (
                    [
                        str(history.prior_employment.gross),
                        str(history.prior_employment.pph21_withheld),
                    ]
                    if history.prior_employment
                    else None
                ),
            }
        json_str = json.dumps(inputs_data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def _generate_record_id(
        self,
        employee_id: str,
        period: str,
        inputs_fingerprint: str,
        rates_fingerprint: str,
    ) -> str:
        """Generate deterministic record ID."""
        data = {
            "employee_id": employee_id,
            "period": period,
            "engine_version": self.engine_version,
            "inputs_fingerprint": inputs_fingerprint,
            "rates_fingerprint": rates_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return str(UUID(bytes=hash_bytes[:16]))
