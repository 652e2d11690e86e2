"""Pydantic models for configuration and wire messages."""
