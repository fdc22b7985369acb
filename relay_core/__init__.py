"""Engine-side pipeline for moving a platform between simulation instances."""

__version__ = "0.4.0"
