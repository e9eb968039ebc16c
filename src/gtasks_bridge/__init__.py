"""Bidirectional Asana <-> Google Tasks synchronization bridge."""

__version__ = "0.1.0"
