"""Concord: multi-agent debate for code review and implementation planning."""

__version__ = "0.1.0"
