"""Utility helpers shared across booking engine services."""
