"""Qrydex: business enrichment and verification pipeline."""

__version__ = "1.0.0"
