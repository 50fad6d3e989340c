"""Guardião: scoring of suspicious links and messages, and the alerts they raise."""

__version__ = "1.0.0"
