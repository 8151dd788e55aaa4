"""Helper utilities for tickflow."""
