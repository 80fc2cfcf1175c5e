"""Slot context for the booking workflow."""
