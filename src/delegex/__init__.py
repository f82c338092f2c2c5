"""Delegex -- delegated execution engine for session-key wallet automation."""

__version__ = "0.1.0"
