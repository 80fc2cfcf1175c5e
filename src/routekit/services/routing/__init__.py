"""Route optimization."""
