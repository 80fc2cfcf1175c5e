"""Caching, route optimization and service-area validation for technician scheduling."""

__version__ = "0.1.0"
