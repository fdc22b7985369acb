"""Backend package for the platform relay.

This package provides the instance service (simulation host, tick loop and
job processor behind an HTTP API), the chunked transport, and the transfer
controller that moves platforms between instances.
"""

__version__ = "0.4.0"
