"""Shared error and logging primitives for the autopilot core."""
