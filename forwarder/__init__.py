"""Dynatrace problem forwarder."""

__version__ = "0.3.0"
