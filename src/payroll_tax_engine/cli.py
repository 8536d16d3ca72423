"""Payroll tax engine command line interface.

Provides operator tools for:
- Single-employee calculation
- Batch recalculation from a JSON file
- Rate-table inspection
- PTKP category lookup
- Running the HTTP service

Usage:
    python -m payroll_tax_engine.cli calculate --ptkp TK/0 --gross 8000000 --period 2024-01
    python -m payroll_tax_engine.cli recalculate --period 2024-01 --input employees.json
    python -m payroll_tax_engine.cli rate-table --date 2024-06-01
    python -m payroll_tax_engine.cli ptkp --status K --combined --dependents 2
    python -m payroll_tax_engine.cli serve
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, TextIO

from payroll_tax_engine.api.schemas import EmployeePayrollIn
from payroll_tax_engine.calculators import PayrollEngine, PTKPResolver, RateTableStore
from payroll_tax_engine.calculators.types import (
    EmployeeTaxProfile,
    PayrollRecord,
    PayType,
)
from payroll_tax_engine.config import get_settings
from payroll_tax_engine.exceptions import PayrollEngineError
from payroll_tax_engine.logging_config import configure_logging
from payroll_tax_engine.periods import parse_period
from payroll_tax_engine.services.batch_service import BatchRecalculator, PayrollRequest


def parse_decimal(s: str) -> Decimal:
    """Parse a currency amount."""
    try:
        return Decimal(s.replace(",", "").replace("_", ""))
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {s!r}") from None


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {s!r}") from None


def _request_from_row(row: dict[str, Any], fiscal_year: int) -> PayrollRequest:
    """Build a batch request from one row of a recalculate input file.

    Rows use the API's employee fields; a top-level
    ``employment_start_month`` is folded into ``history``.
    """
    row = dict(row)
    if "employee_id" in row:
        row["employee_id"] = str(row["employee_id"])
    start_month = row.pop("employment_start_month", None)
    if start_month is not None:
        row["history"] = {**(row.get("history") or {}), "employment_start_month": start_month}
    return EmployeePayrollIn.model_validate(row).to_request(fiscal_year)


def _rupiah(amount: Decimal) -> str:
    return f"Rp {amount:,.0f}"


def _pct(rate: Decimal) -> str:
    return f"{(rate * 100).quantize(Decimal('0.01')).normalize():f}%"


class PayrollCli:
    """Payroll tax engine command line interface."""

    def __init__(
        self,
        store: RateTableStore | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self._store = store
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.parser = self._build_parser()

    @property
    def store(self) -> RateTableStore:
        if self._store is None:
            self._store = RateTableStore.load(get_settings().rate_table_dir)
        return self._store

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payroll_tax_engine.cli",
            description="Indonesian PPh 21 / BPJS calculation tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # calculate command
        calc = subparsers.add_parser("calculate", help="Compute one employee's payroll record")
        calc.add_argument("--ptkp", required=True, help="PTKP code, e.g. TK/0, K/1, K/I/2")
        calc.add_argument("--gross", type=parse_decimal, required=True, help="Monthly gross salary")
        calc.add_argument("--period", required=True, help="Payroll period (YYYY-MM)")
        calc.add_argument("--npwp", help="Taxpayer number; omit when the employee has none")
        calc.add_argument("--employee-id", default="cli", help="Employee identifier")
        calc.add_argument(
            "--pay-type",
            choices=[p.value for p in PayType],
            default=PayType.GROSS.value,
            help="gross (employee bears tax) or gross_up (company allowance)",
        )
        calc.add_argument("--json", action="store_true", help="Output as JSON")

        # recalculate command
        recalc = subparsers.add_parser(
            "recalculate", help="Recalculate every employee in a JSON file"
        )
        recalc.add_argument("--period", required=True, help="Payroll period (YYYY-MM)")
        recalc.add_argument(
            "--input",
            type=Path,
            required=True,
            help="JSON list of {employee_id, ptkp_code, npwp, gross_salary}",
        )
        recalc.add_argument("--workers", type=int, help="Worker threads")
        recalc.add_argument("--json", action="store_true", help="Output as JSON")

        # rate-table command
        rates = subparsers.add_parser("rate-table", help="Show the rate table in force on a date")
        rates.add_argument("--date", type=parse_date, default=None, help="Date (default: today)")
        rates.add_argument("--json", action="store_true", help="Output the raw payload")

        # ptkp command
        ptkp = subparsers.add_parser("ptkp", help="Resolve a PTKP category")
        ptkp.add_argument("--status", choices=["TK", "K"], required=True, help="Marital status")
        ptkp.add_argument("--combined", action="store_true", help="Spouse income combined (K/I)")
        ptkp.add_argument("--dependents", type=int, default=0, help="Number of dependents")
        ptkp.add_argument("--date", type=parse_date, default=None, help="Date (default: today)")

        # serve command
        serve = subparsers.add_parser("serve", help="Run the HTTP API")
        serve.add_argument("--host", help="Bind address (default: HOST)")
        serve.add_argument("--port", type=int, help="Port (default: PORT)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help(self.out)
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "calculate": self._cmd_calculate,
            "recalculate": self._cmd_recalculate,
            "rate-table": self._cmd_rate_table,
            "ptkp": self._cmd_ptkp,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=self.err)
            return 1
        try:
            return handler(parsed)
        except PayrollEngineError as e:
            print(f"Error [{e.code}]: {e}", file=self.err)
            return 2

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def _engine(self) -> PayrollEngine:
        return PayrollEngine(self.store, engine_version=get_settings().engine_version)

    def _cmd_calculate(self, args: argparse.Namespace) -> int:
        """Compute and print one record."""
        profile = EmployeeTaxProfile(args.employee_id, args.ptkp, args.npwp)
        record = self._engine().compute_payroll(
            profile, args.period, args.gross, pay_type=args.pay_type
        )
        if args.json:
            self._print(json.dumps(record.to_dict(), indent=2))
        else:
            self._print_record(record)
        return 0

    def _print_record(self, record: PayrollRecord) -> None:
        self._print(f"Payroll {record.employee_id} {record.period}")
        self._print("=" * 40)
        self._print(f"  PTKP status:     {record.ptkp_status} ({_rupiah(record.ptkp_amount)})")
        self._print(f"  TER:             {record.ter_category} @ {_pct(record.ter_rate)}")
        self._print(f"  Gross salary:    {_rupiah(record.gross_salary)}")
        if record.tax_allowance:
            self._print(f"  Tax allowance:   {_rupiah(record.tax_allowance)}")
        self._print(f"  PPh 21:          {_rupiah(record.pph21)}")
        if record.pph21_adjustment:
            self._print(f"  PPh 21 true-up:  {_rupiah(record.pph21_adjustment)}")
        for share in record.bpjs.shares:
            self._print(
                f"  BPJS {share.program.value:<10} EE {_rupiah(share.employee_share)}"
                f" / ER {_rupiah(share.company_share)}"
            )
        self._print(f"  Net salary:      {_rupiah(record.net_salary)}")
        self._print(f"  Cost to company: {_rupiah(record.total_cost_to_company)}")
        self._print(f"  Rate table:      {record.rate_table_version}")

    def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        """Batch-compute a JSON file of employees."""
        try:
            rows: list[dict[str, Any]] = json.loads(args.input.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"Cannot read {args.input}: {e}", file=self.err)
            return 1

        try:
            year, _ = parse_period(args.period)
            requests = [_request_from_row(row, year) for row in rows]
        except (TypeError, ValueError) as e:
            print(f"Invalid employee row in {args.input}: {e}", file=self.err)
            return 1
        workers = args.workers or get_settings().batch_workers
        result = BatchRecalculator(self._engine(), workers=workers).run(args.period, requests)

        if args.json:
            self._print(json.dumps({
                "period": result.period,
                "rate_table_version": result.rate_table_version,
                "records": [r.to_dict() for r in result.records],
                "failures": [
                    {"employee_id": f.employee_id, "reason": f.reason, "error_code": f.error_code}
                    for f in result.failures
                ],
            }, indent=2))
        else:
            self._print(f"Recalculated {args.period} with rate table {result.rate_table_version}")
            for record in result.records:
                self._print(
                    f"  {record.employee_id:<12} PPh21 {_rupiah(record.pph21):>16}"
                    f"  net {_rupiah(record.net_salary):>16}"
                )
            for failure in result.failures:
                self._print(f"  {failure.employee_id:<12} FAILED [{failure.error_code}] {failure.reason}")
        return 0 if not result.failures else 3

    def _cmd_rate_table(self, args: argparse.Namespace) -> int:
        """Show the rate table in force."""
        snapshot = self.store.get(args.date or date.today())
        if args.json:
            self._print(json.dumps(snapshot.to_payload(), indent=2))
            return 0

        self._print(f"Rate table {snapshot.version} (effective {snapshot.effective_date})")
        self._print(f"  Fingerprint: {snapshot.fingerprint}")
        self._print("\n  PTKP:")
        for category in snapshot.ptkp_categories.values():
            ter = snapshot.ter_category_map.get(category.code, "-")
            self._print(f"    {category.code:<6} {_rupiah(category.annual_allowance):>16}  TER {ter}")
        self._print("\n  TER brackets:")
        for category, brackets in snapshot.ter_brackets.items():
            self._print(f"    {category}: {len(brackets)} brackets, top rate {_pct(brackets[-1].rate)}")
        self._print("\n  Progressive brackets:")
        for bracket in snapshot.progressive_brackets:
            upper = _rupiah(bracket.max_annual_income) if bracket.max_annual_income else "and above"
            self._print(
                f"    {_rupiah(bracket.min_annual_income)} - {upper}: {_pct(bracket.rate)}"
            )
        self._print("\n  BPJS:")
        for rate in snapshot.bpjs_rates:
            cap = _rupiah(rate.salary_cap) if rate.salary_cap else "uncapped"
            self._print(
                f"    {rate.program.value:<10} EE {_pct(rate.employee_rate)}"
                f"  ER {_pct(rate.company_rate)}  cap {cap}"
            )
        return 0

    def _cmd_ptkp(self, args: argparse.Namespace) -> int:
        """Resolve a PTKP category."""
        snapshot = self.store.get(args.date or date.today())
        category = PTKPResolver(snapshot).resolve(args.status, args.combined, args.dependents)
        ter = snapshot.ter_category_map.get(category.code, "-")
        self._print(f"{category.code}: {_rupiah(category.annual_allowance)} per year")
        self._print(f"  Monthly:      {_rupiah(category.monthly_allowance)}")
        self._print(f"  TER category: {ter}")
        self._print(f"  Rate table:   {snapshot.version}")
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run the HTTP API with uvicorn."""
        import uvicorn

        settings = get_settings()
        uvicorn.run(
            "payroll_tax_engine.api.app:app",
            host=args.host or settings.host,
            port=args.port or settings.port,
            reload=settings.debug,
        )
        return 0


def main(args: list[str] | None = None) -> int:
    """CLI entry point."""
    configure_logging(get_settings().log_level)
    return PayrollCli().run(args)


if __name__ == "__main__":
    sys.exit(main())
