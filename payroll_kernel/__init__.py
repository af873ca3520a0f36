"""
Payroll Kernel

Infrastructure shared by the calculation engines and the payroll module:
- Versioned, immutable payroll run snapshots
- Payroll period lifecycle (draft -> locked -> posted)
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Deterministic clock and hashing
"""

__version__ = "0.1.0"
