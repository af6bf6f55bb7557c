"""Lease-based execution engine for scheduled automation jobs."""

__version__ = "0.1.0"
