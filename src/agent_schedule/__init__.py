"""Recurring unattended runs of a CLI coding agent."""

__version__ = "0.1.0"
