"""Measure pull-request delivery speed across two time periods."""

__version__ = "0.1.0"
