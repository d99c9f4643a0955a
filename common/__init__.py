"""Shared helpers used across the platform apps."""
