"""
Module: payroll_kernel.db.types
Responsibility: The single sanctioned rounding function for salary amounts.
Architecture position: Kernel > DB.  May be imported by engines and modules;
    imports nothing from the payroll packages.

Invariants enforced:
    - Every computed amount is rounded to two decimals, ROUND_HALF_UP, at the
      point it is computed.  Intermediate values keep full precision.
"""

from decimal import ROUND_HALF_UP, Decimal

PAISE = Decimal("0.01")


def round_money(value: Decimal, quantum: Decimal = PAISE) -> Decimal:
    """Quantize ``value`` half-up, to paise unless another quantum is given."""
    return value.quantize(quantum, rounding=ROUND_HALF_UP)
