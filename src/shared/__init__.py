"""Shared constants and enums."""
