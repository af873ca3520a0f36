"""
Payroll Modules.

Thin orchestration over the payroll kernel and the pure engines.  Each
module contains:
- Domain models (the nouns)
- ORM persistence for the inputs it reads
- Selectors (read-side queries returning DTOs)
- Configuration schema (policy and settings)
- A service facade that owns the transaction boundary

Modules:
- Payroll: attendance basis, compensation, components, compliance,
  run finalization and supersession
"""
