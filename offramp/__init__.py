"""Stable-token to fiat off-ramp orchestration service."""

__version__ = "0.1.0"
