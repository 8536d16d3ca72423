"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from payroll_tax_engine.calculators.rate_store import RateTableSnapshot
from payroll_tax_engine.calculators.types import (
    AnnualHistory,
    EmployeeTaxProfile,
    MonthlyIncome,
    PayrollRecord,
    PriorEmployment,
    SalaryComponents,
)
from payroll_tax_engine.services.batch_service import BatchResult, PayrollRequest


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None


# ============================================================================
# Calculation inputs
# ============================================================================


class SalaryComponentsIn(BaseModel):
    """Breakdown of gross salary."""

    basic_salary: Decimal
    allowances: Decimal = Decimal("0")
    overtime: Decimal = Decimal("0")
    bonus: Decimal = Decimal("0")
    thr: Decimal = Decimal("0")

    def to_domain(self) -> SalaryComponents:
        return SalaryComponents(**self.model_dump())


class MonthlyIncomeIn(BaseModel):
    month: int = Field(ge=1, le=12)
    gross: Decimal
    pph21_withheld: Decimal


class PriorEmploymentIn(BaseModel):
    gross: Decimal
    pph21_withheld: Decimal = Decimal("0")


class AnnualHistoryIn(BaseModel):
    """Earlier months of the fiscal year."""

    employment_start_month: int = Field(default=1, ge=1, le=12)
    months: list[MonthlyIncomeIn] = Field(default_factory=list)
    prior_employment: PriorEmploymentIn | None = None

    def to_domain(self, fiscal_year: int) -> AnnualHistory:
        return AnnualHistory(
            fiscal_year=fiscal_year,
            employment_start_month=self.employment_start_month,
            months={m.month: MonthlyIncome(m.gross, m.pph21_withheld) for m in self.months},
            prior_employment=self.prior_employment_domain(),
        )

    def prior_employment_domain(self) -> PriorEmployment | None:
        if self.prior_employment is None:
            return None
        return PriorEmployment(self.prior_employment.gross, self.prior_employment.pph21_withheld)


class EmployeePayrollIn(BaseModel):
    """One employee's inputs for a period."""

    employee_id: str
    ptkp_code: str | None = None
    npwp: str | None = None
    gross_salary: Decimal | None = None
    components: SalaryComponentsIn | None = None
    history: AnnualHistoryIn | None = None
    use_stored_history: bool = False
    terminated: bool = False
    pay_type: str = "gross"

    def to_profile(self) -> EmployeeTaxProfile:
        return EmployeeTaxProfile(
            employee_id=self.employee_id, ptkp_code=self.ptkp_code, npwp=self.npwp
        )

    def to_request(self, fiscal_year: int, history: AnnualHistory | None = None) -> PayrollRequest:
        if history is None and self.history is not None:
            history = self.history.to_domain(fiscal_year)
        return PayrollRequest(
            profile=self.to_profile(),
            gross_salary=self.gross_salary,
            components=self.components.to_domain() if self.components else None,
            history=history,
            terminated=self.terminated,
            pay_type=self.pay_type,
        )


class PayrollCalculateRequest(EmployeePayrollIn):
    """Schema for a single calculation."""

    period: str
    persist: bool = False


class PayrollRecalculateRequest(BaseModel):
    """Schema for a batch recalculation."""

    period: str
    employees: list[EmployeePayrollIn]
    persist: bool = False


# ============================================================================
# Calculation outputs
# ============================================================================


class BPJSShareResponse(BaseModel):
    program: str
    base: Decimal
    employee_share: Decimal
    company_share: Decimal


class ReconciliationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    fiscal_year: int
    annual_gross: Decimal
    ptkp_amount: Decimal
    taxable_income: Decimal
    annual_tax: Decimal
    withheld_to_date: Decimal
    adjustment: Decimal


class PayrollRecordResponse(BaseModel):
    """Schema for a payroll record."""

    record_id: str
    employee_id: str
    period: str
    version: int
    gross_salary: Decimal
    taxable_income: Decimal
    taxable_income_basis: str
    ptkp_status: str
    ptkp_amount: Decimal
    ter_category: str
    ter_rate: Decimal
    pph21: Decimal
    pph21_adjustment: Decimal
    bpjs: list[BPJSShareResponse]
    bpjs_employee_total: Decimal
    bpjs_company_total: Decimal
    net_salary: Decimal
    total_cost_to_company: Decimal
    pay_type: str
    tax_allowance: Decimal
    rate_table_version: str
    fiscal_status: str
    inputs_fingerprint: str
    computed_at: datetime
    reconciliation: ReconciliationResponse | None = None

    @classmethod
    def from_record(cls, record: PayrollRecord) -> "PayrollRecordResponse":
        return cls(
            record_id=record.record_id,
            employee_id=record.employee_id,
            period=record.period,
            version=record.version,
            gross_salary=record.gross_salary,
            taxable_income=record.taxable_income,
            taxable_income_basis=record.taxable_income_basis.value,
            ptkp_status=record.ptkp_status,
            ptkp_amount=record.ptkp_amount,
            ter_category=record.ter_category,
            ter_rate=record.ter_rate,
            pph21=record.pph21,
            pph21_adjustment=record.pph21_adjustment,
            bpjs=[
                BPJSShareResponse(
                    program=s.program.value,
                    base=s.base,
                    employee_share=s.employee_share,
                    company_share=s.company_share,
                )
                for s in record.bpjs.shares
            ],
            bpjs_employee_total=record.bpjs_employee_total,
            bpjs_company_total=record.bpjs_company_total,
            net_salary=record.net_salary,
            total_cost_to_company=record.total_cost_to_company,
            pay_type=record.pay_type.value,
            tax_allowance=record.tax_allowance,
            rate_table_version=record.rate_table_version,
            fiscal_status=record.fiscal_status,
            inputs_fingerprint=record.inputs_fingerprint,
            computed_at=record.computed_at,
            reconciliation=(
                ReconciliationResponse.model_validate(record.reconciliation)
                if record.reconciliation
                else None
            ),
        )


class BatchFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: str
    reason: str
    error_code: str


class PayrollRecalculateResponse(BaseModel):
    """Schema for batch results."""

    period: str
    rate_table_version: str
    records: list[PayrollRecordResponse]
    failures: list[BatchFailureResponse]
    skipped: list[str]
    cancelled: bool

    @classmethod
    def from_result(cls, result: BatchResult) -> "PayrollRecalculateResponse":
        return cls(
            period=result.period,
            rate_table_version=result.rate_table_version,
            records=[PayrollRecordResponse.from_record(r) for r in result.records],
            failures=[BatchFailureResponse.model_validate(f) for f in result.failures],
            skipped=result.skipped,
            cancelled=result.cancelled,
        )


class FinalizeResponse(BaseModel):
    employee_id: str
    fiscal_year: int
    records_finalized: int


# ============================================================================
# Rate tables
# ============================================================================


class PTKPCategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    marital_status: str
    income_combined: bool
    dependents: int
    annual_allowance: Decimal
    monthly_allowance: Decimal


class TERBracketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min_monthly_income: Decimal
    max_monthly_income: Decimal | None
    rate: Decimal


class ProgressiveBracketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min_annual_income: Decimal
    max_annual_income: Decimal | None
    rate: Decimal


class BPJSRateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    program: str
    employee_rate: Decimal
    company_rate: Decimal
    salary_cap: Decimal | None


class RateTableSummary(BaseModel):
    version: str
    effective_date: date
    fingerprint: str


class RateTableResponse(RateTableSummary):
    """Schema for a rate-table version."""

    non_npwp_surcharge: Decimal
    ptkp_categories: list[PTKPCategoryResponse]
    ter_category_map: dict[str, str]
    ter_brackets: dict[str, list[TERBracketResponse]]
    progressive_brackets: list[ProgressiveBracketResponse]
    bpjs: list[BPJSRateResponse]

    @classmethod
    def from_snapshot(cls, snapshot: RateTableSnapshot) -> "RateTableResponse":
        return cls(
            version=snapshot.version,
            effective_date=snapshot.effective_date,
            fingerprint=snapshot.fingerprint,
            non_npwp_surcharge=snapshot.non_npwp_surcharge,
            ptkp_categories=[
                PTKPCategoryResponse(
                    code=c.code,
                    marital_status=c.marital_status.value,
                    income_combined=c.income_combined,
                    dependents=c.dependents,
                    annual_allowance=c.annual_allowance,
                    monthly_allowance=c.monthly_allowance,
                )
                for c in snapshot.ptkp_categories.values()
            ],
            ter_category_map=dict(snapshot.ter_category_map),
            ter_brackets={
                category: [TERBracketResponse.model_validate(b) for b in brackets]
                for category, brackets in snapshot.ter_brackets.items()
            },
            progressive_brackets=[
                ProgressiveBracketResponse.model_validate(b)
                for b in snapshot.progressive_brackets
            ],
            bpjs=[
                BPJSRateResponse(
                    program=r.program.value,
                    employee_rate=r.employee_rate,
                    company_rate=r.company_rate,
                    salary_cap=r.salary_cap,
                )
                for r in snapshot.bpjs_rates
            ],
        )
