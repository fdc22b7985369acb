"""Quiescence lock configuration constants."""

STALE_LOCK_MAX_AGE_TICKS = 36_000  # 10 minutes at 60 UPS
REAP_INTERVAL_TICKS = 3_600

# Object types that carry an activity flag and are frozen while locked.
# Activation after import uses the same set.
ACTIVATABLE_TYPES = frozenset(
    {
        "assembling-machine",
        "furnace",
        "mining-drill",
        "lab",
        "rocket-silo",
        "agricultural-tower",
        "reactor",
        "generator",
        "burner-generator",
        "boiler",
        "fusion-reactor",
        "fusion-generator",
        "inserter",
        "loader",
        "loader-1x1",
        "pump",
        "offshore-pump",
        "roboport",
        "beacon",
        "radar",
        "thruster",
        "asteroid-collector",
        "cargo-bay",
        "space-platform-hub",
        "cargo-landing-pad",
    }
)

# Conveyor-type objects keep moving while the platform is locked.
CONVEYOR_TYPES = frozenset({"transport-belt", "underground-belt", "splitter"})

# Cargo pod states handled during lock
POD_DRAIN_STATES = frozenset({"descending", "parking"})
POD_FINISH_STATES = frozenset({"ascending", "surface_transition"})
POD_DISCARD_STATES = frozenset({"awaiting_launch"})
