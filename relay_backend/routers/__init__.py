"""API routers for the relay backend."""
