"""Reconciliation tolerance constants.

The accepted-loss fraction is an empirical figure for inventory capacity
ceilings on the reference host; hosts with different behavior should
override it through ``RELAY_ACCEPTED_LOSS_FRACTION``.
"""

FLUID_EPSILON = 0.1  # Absolute tolerance for ordinary fluid buckets
HIGH_TEMP_THRESHOLD = 10_000.0  # Buckets at/above this are reconciled per fluid name
HIGH_TEMP_TOLERANCE = 1.0  # Absolute tolerance for the per-name aggregate
ACCEPTED_LOSS_FRACTION = 0.005  # Residual item shortfall allowed, as a fraction of expected
DEFAULT_FLUID_TEMPERATURE = 15.0

# Failed placement ledger
MAX_FAILED_ENTITY_DETAILS = 50
