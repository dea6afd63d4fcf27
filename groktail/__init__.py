"""Grok-based log file parser: tails log files and emits typed metric records."""

__version__ = "0.1.0"
