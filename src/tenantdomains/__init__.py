"""Tenant custom domains: DNS ownership verification and TLS certificate lifecycle."""

__version__ = "0.1.0"
