"""HTTP API for the payroll tax engine."""
