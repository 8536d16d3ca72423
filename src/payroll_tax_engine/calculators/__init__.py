"""Payroll tax and contribution calculators."""

from payroll_tax_engine.calculators.bpjs_calculator import BPJSCalculator
from payroll_tax_engine.calculators.engine import PayrollEngine
from payroll_tax_engine.calculators.pph21_calculator import PPh21Calculator
from payroll_tax_engine.calculators.ptkp_resolver import PTKPResolver
from payroll_tax_engine.calculators.rate_store import RateTableSnapshot, RateTableStore
from payroll_tax_engine.calculators.ter_locator import TERLocator

__all__ = [
    "BPJSCalculator",
    "PayrollEngine",
    "PPh21Calculator",
    "PTKPResolver",
    "RateTableSnapshot",
    "RateTableStore",
    "TERLocator",
]
