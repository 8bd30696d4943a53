"""Shared enums, errors, models, interfaces, clock and configuration."""
