"""Configuration package for the relay pipeline.

Constants live in small topic modules (processing, validation, transport,
locking); ``relay_config`` groups them into dataclasses that can be
overridden from the environment.
"""
