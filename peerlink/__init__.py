"""Nearby-peer text messaging over whichever transport is available."""

__version__ = "0.1.0"
