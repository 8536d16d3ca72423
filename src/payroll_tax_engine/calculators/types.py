"""Type definitions for the tax and contribution pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

RUPIAH = Decimal("1")
ZERO = Decimal("0")


def round_rupiah(amount: Decimal) -> Decimal:
    """Round to the nearest whole rupiah, half-up."""
    return amount.quantize(RUPIAH, rounding=ROUND_HALF_UP)


class MaritalStatus(str, Enum):
    """PTKP marital status."""

    TK = "TK"  # tidak kawin
    K = "K"  # kawin


class BPJSProgram(str, Enum):
    """BPJS social-security programs."""

    KESEHATAN = "Kesehatan"
    JKK = "JKK"
    JKM = "JKM"
    JHT = "JHT"
    JP = "JP"


class PayType(str, Enum):
    """How PPh 21 is borne."""

    GROSS = "gross"  # employee bears the tax
    GROSS_UP = "gross_up"  # company pays a tax allowance


class TaxableIncomeBasis(str, Enum):
    """How a record's taxable income was derived."""

    ANNUALIZED = "annualized"
    YEAR_TO_DATE = "year_to_date"


# ===== Rate table rows =====


@dataclass(frozen=True)
class PTKPCategory:
    """Non-taxable income category."""

    code: str
    marital_status: MaritalStatus
    income_combined: bool
    dependents: int
    annual_allowance: Decimal

    @property
    def monthly_allowance(self) -> Decimal:
        return self.annual_allowance / 12

    @staticmethod
    def build_code(marital_status: MaritalStatus, income_combined: bool, dependents: int) -> str:
        if income_combined:
            return f"{marital_status.value}/I/{dependents}"
        return f"{marital_status.value}/{dependents}"


@dataclass(frozen=True)
class TERBracket:
    """Monthly effective-rate bracket.

    Lower bound inclusive, upper bound exclusive; max None = open-ended.
    """

    category: str
    min_monthly_income: Decimal
    max_monthly_income: Decimal | None
    rate: Decimal

    def contains(self, income: Decimal) -> bool:
        if income < self.min_monthly_income:
            return False
        return self.max_monthly_income is None or income < self.max_monthly_income


@dataclass(frozen=True)
class TerRate:
    """Result of a TER lookup."""

    ptkp_code: str
    category: str
    rate: Decimal
    bracket: TERBracket


@dataclass(frozen=True)
class ProgressiveTaxBracket:
    """Annual progressive bracket used for year-end reconciliation."""

    min_annual_income: Decimal
    max_annual_income: Decimal | None
    rate: Decimal

    def overlap(self, taxable_income: Decimal) -> Decimal:
        """Portion of taxable income falling inside this bracket."""
        if taxable_income <= self.min_annual_income:
            return ZERO
        upper = taxable_income
        if self.max_annual_income is not None:
            upper = min(taxable_income, self.max_annual_income)
        return upper - self.min_annual_income


@dataclass(frozen=True)
class BPJSProgramRate:
    """Contribution rates for one BPJS program."""

    program: BPJSProgram
    employee_rate: Decimal
    company_rate: Decimal
    salary_cap: Decimal | None = None  # None = uncapped

    def contribution_base(self, gross_salary: Decimal) -> Decimal:
        if self.salary_cap is None:
            return gross_salary
        return min(gross_salary, self.salary_cap)


# ===== Employee inputs =====


@dataclass(frozen=True)
class EmployeeTaxProfile:
    """Tax profile owned by HR master data; read-only here."""

    employee_id: str
    ptkp_code: str | None
    npwp: str | None = None

    @property
    def has_npwp(self) -> bool:
        return bool(self.npwp and self.npwp.strip())


@dataclass(frozen=True)
class SalaryComponents:
    """Breakdown of a period's gross salary."""

    basic_salary: Decimal
    allowances: Decimal = ZERO
    overtime: Decimal = ZERO
    bonus: Decimal = ZERO
    thr: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.basic_salary + self.allowances + self.overtime + self.bonus + self.thr

    def as_dict(self) -> dict[str, str]:
        return {
            "basic_salary": str(self.basic_salary),
            "allowances": str(self.allowances),
            "overtime": str(self.overtime),
            "bonus": str(self.bonus),
            "thr": str(self.thr),
        }


@dataclass(frozen=True)
class MonthlyIncome:
    """Gross and withheld tax of one earlier period in the fiscal year."""

    gross: Decimal
    pph21_withheld: Decimal


@dataclass(frozen=True)
class PriorEmployment:
    """Income from a previous employer in the same fiscal year.

    Use gross 0 to declare that there was no previous employer.
    """

    gross: Decimal
    pph21_withheld: Decimal = ZERO


@dataclass
class AnnualHistory:
    """Fiscal-year context for one employee, excluding the current period."""

    fiscal_year: int
    employment_start_month: int = 1
    months: dict[int, MonthlyIncome] = field(default_factory=dict)
    prior_employment: PriorEmployment | None = None

    def gross_before(self, month: int) -> Decimal:
        total = sum((m.gross for k, m in self.months.items() if k < month), ZERO)
        if self.prior_employment is not None:
            total += self.prior_employment.gross
        return total

    def withheld_before(self, month: int) -> Decimal:
        total = sum((m.pph21_withheld for k, m in self.months.items() if k < month), ZERO)
        if self.prior_employment is not None:
            total += self.prior_employment.pph21_withheld
        return total

    def missing_months(self, month: int) -> list[int]:
        return [
            m for m in range(self.employment_start_month, month) if m not in self.months
        ]


# ===== Results =====


@dataclass(frozen=True)
class BPJSShare:
    """Employee and company share for one program."""

    program: BPJSProgram
    base: Decimal
    employee_share: Decimal
    company_share: Decimal


@dataclass(frozen=True)
class BPJSContributions:
    """Contributions for every configured program."""

    shares: tuple[BPJSShare, ...]

    @property
    def employee_total(self) -> Decimal:
        return sum((s.employee_share for s in self.shares), ZERO)

    @property
    def company_total(self) -> Decimal:
        return sum((s.company_share for s in self.shares), ZERO)

    def get(self, program: BPJSProgram) -> BPJSShare:
        for share in self.shares:
            if share.program == program:
                return share
        raise KeyError(program)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            s.program.value: {
                "base": str(s.base),
                "employee_share": str(s.employee_share),
                "company_share": str(s.company_share),
            }
            for s in self.shares
        }


@dataclass(frozen=True)
class AnnualReconciliation:
    """Year-end true-up of PPh 21."""

    fiscal_year: int
    annual_gross: Decimal
    ptkp_amount: Decimal
    taxable_income: Decimal
    annual_tax: Decimal
    withheld_to_date: Decimal
    adjustment: Decimal  # positive = extra withholding, negative = refund

    @property
    def is_refund(self) -> bool:
        return self.adjustment < 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "fiscal_year": self.fiscal_year,
            "annual_gross": str(self.annual_gross),
            "ptkp_amount": str(self.ptkp_amount),
            "taxable_income": str(self.taxable_income),
            "annual_tax": str(self.annual_tax),
            "withheld_to_date": str(self.withheld_to_date),
            "adjustment": str(self.adjustment),
        }


@dataclass(frozen=True)
class PayrollRecord:
    """Per-employee-per-period payroll result. Immutable once built."""

    record_id: str
    employee_id: str
    period: str
    gross_salary: Decimal
    taxable_income: Decimal
    taxable_income_basis: TaxableIncomeBasis
    ptkp_status: str
    ptkp_amount: Decimal
    ter_category: str
    ter_rate: Decimal
    pph21: Decimal
    pph21_adjustment: Decimal
    bpjs: BPJSContributions
    bpjs_employee_total: Decimal
    bpjs_company_total: Decimal
    net_salary: Decimal
    total_cost_to_company: Decimal
    pay_type: PayType
    tax_allowance: Decimal
    rate_table_version: str
    fiscal_status: str
    inputs_fingerprint: str
    computed_at: datetime
    reconciliation: AnnualReconciliation | None = None
    version: int = 1

    @property
    def total_pph21(self) -> Decimal:
        return self.pph21 + self.pph21_adjustment

    def to_canonical_dict(self) -> dict[str, Any]:
        """Deterministic content, excluding computed_at and version."""
        return {
            "record_id": self.record_id,
            "employee_id": self.employee_id,
            "period": self.period,
            "gross_salary": str(self.gross_salary),
            "taxable_income": str(self.taxable_income),
            "taxable_income_basis": self.taxable_income_basis.value,
            "ptkp_status": self.ptkp_status,
            "ptkp_amount": str(self.ptkp_amount),
            "ter_category": self.ter_category,
            "ter_rate": str(self.ter_rate),
            "pph21": str(self.pph21),
            "pph21_adjustment": str(self.pph21_adjustment),
            "bpjs": self.bpjs.to_dict(),
            "bpjs_employee_total": str(self.bpjs_employee_total),
            "bpjs_company_total": str(self.bpjs_company_total),
            "net_salary": str(self.net_salary),
            "total_cost_to_company": str(self.total_cost_to_company),
            "pay_type": self.pay_type.value,
            "tax_allowance": str(self.tax_allowance),
            "rate_table_version": self.rate_table_version,
            "fiscal_status": self.fiscal_status,
            "inputs_fingerprint": self.inputs_fingerprint,
            "reconciliation": self.reconciliation.to_dict() if self.reconciliation else None,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.to_canonical_dict()
        data["computed_at"] = self.computed_at.isoformat()
        data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayrollRecord:
        """Rebuild a record from ``to_dict`` output."""
        shares = tuple(
            BPJSShare(
                program=BPJSProgram(program),
                base=Decimal(share["base"]),
                employee_share=Decimal(share["employee_share"]),
                company_share=Decimal(share["company_share"]),
            )
            for program, share in data["bpjs"].items()
        )
        recon = data.get("reconciliation")
        reconciliation = None
        if recon:
            reconciliation = AnnualReconciliation(
                fiscal_year=int(recon["fiscal_year"]),
                **{
                    k: Decimal(recon[k])
                    for k in (
                        "annual_gross",
                        "ptkp_amount",
                        "taxable_income",
                        "annual_tax",
                        "withheld_to_date",
                        "adjustment",
                    )
                },
            )
        money = (
            "gross_salary",
            "taxable_income",
            "ptkp_amount",
            "ter_rate",
            "pph21",
            "pph21_adjustment",
            "bpjs_employee_total",
            "bpjs_company_total",
            "net_salary",
            "total_cost_to_company",
            "tax_allowance",
        )
        return cls(
            record_id=data["record_id"],
            employee_id=data["employee_id"],
            period=data["period"],
            taxable_income_basis=TaxableIncomeBasis(data["taxable_income_basis"]),
            ptkp_status=data["ptkp_status"],
            ter_category=data["ter_category"],
            bpjs=BPJSContributions(shares=shares),
            pay_type=PayType(data["pay_type"]),
            rate_table_version=data["rate_table_version"],
            fiscal_status=data["fiscal_status"],
            inputs_fingerprint=data["inputs_fingerprint"],
            computed_at=datetime.fromisoformat(data["computed_at"]),
            reconciliation=reconciliation,
            version=int(data.get("version", 1)),
            **{k: Decimal(data[k]) for k in money},
        )
