"""Service-area boundary validation."""
