"""
Payroll reference data: pay-component catalogue and compliance rule sets.

Defaults ship as YAML under ``payroll_config/defaults``.
"""

from payroll_config.loader import (
    ComponentCatalogue,
    ReferenceSnapshot,
    load_catalogue,
    load_compliance_rules,
    load_reference_snapshot,
)

__all__ = [
    "ComponentCatalogue",
    "ReferenceSnapshot",
    "load_catalogue",
    "load_compliance_rules",
    "load_reference_snapshot",
]
