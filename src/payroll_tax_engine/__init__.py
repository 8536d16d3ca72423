"""Indonesian payroll tax and contribution engine (PPh 21 TER, PTKP, BPJS)."""

__version__ = "0.1.0"
