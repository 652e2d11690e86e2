"""Coding-assistant session log monitoring."""
