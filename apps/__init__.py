"""Delegate platform applications."""
