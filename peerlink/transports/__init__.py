"""Concrete transport backends."""
