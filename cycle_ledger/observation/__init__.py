"""Shared observation streams package."""

from cycle_ledger.observation.shared_stream import SharedStream

__all__ = ["SharedStream"]
