"""
Permission management feature module.

Organization-scoped permission grants with optional expiry, evaluated after a
platform-role short-circuit.
"""
