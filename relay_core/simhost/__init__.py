"""In-memory reference simulation host."""

from relay_core.simhost.builders import build_belt_line, build_demo_platform
from relay_core.simhost.memory import MemoryHost, MemoryPlatform, MemorySurface

__all__ = [
    "MemoryHost",
    "MemoryPlatform",
    "MemorySurface",
    "build_belt_line",
    "build_demo_platform",
]
