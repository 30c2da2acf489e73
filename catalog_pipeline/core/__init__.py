"""Core enums, errors and API schemas."""
